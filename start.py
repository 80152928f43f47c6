# start.py
import os
import uvicorn

if __name__ == "__main__":
    ssl_keyfile = os.environ.get("SSL_KEYFILE")
    ssl_certfile = os.environ.get("SSL_CERTFILE")

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("RELOAD") == "1",
        # presence and typing state live in process, keep a single worker
        workers=1,
        loop="asyncio",
        timeout_keep_alive=75,  # keep idle WebSockets from being dropped early
        limit_concurrency=200,
        limit_max_requests=5000,
        backlog=2048,
        # local https, e.g. mkcert certificates
        ssl_keyfile=ssl_keyfile,
        ssl_certfile=ssl_certfile,
    )
