import uvicorn

from speech_segmenter.api.app import app
from speech_segmenter.core.di import get_config


def main() -> None:
    server = get_config().server
    uvicorn.run(app, host=server.host, port=server.port)


if __name__ == "__main__":
    main()
