import os

import uvicorn


def main():
    uvicorn.run(
        "ioc_feeds.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
