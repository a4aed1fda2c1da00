import uvicorn

from .core.config import cfg


def main():
    uvicorn.run("acehls.main:app", host=cfg.APP_HOST, port=cfg.APP_PORT, log_level=cfg.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
