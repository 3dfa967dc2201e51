"""python -m apsara"""

import uvicorn

from apsara.core.config import config


def main() -> None:
    uvicorn.run(
        "apsara.main:app",
        host=config.server.host,
        port=config.server.port,
        ws_max_size=config.server.max_message_bytes,
    )


if __name__ == "__main__":
    main()
