import os
import sys
from datetime import datetime

import uvicorn
from dotenv import load_dotenv

load_dotenv()


class TeeOutput:
    """Write to both console and file simultaneously"""

    def __init__(self, file_path, stream):
        self.file = open(file_path, "a", encoding="utf-8", buffering=1)
        self.stream = stream

    def write(self, data):
        self.stream.write(data)
        self.stream.flush()
        self.file.write(data)
        self.file.flush()

    def flush(self):
        self.stream.flush()
        self.file.flush()


def build_log_config(log_path: str) -> dict:
    """Uvicorn logging: console plus one file per run."""
    file_handler = {
        "class": "logging.FileHandler",
        "formatter": "file_format",
        "filename": log_path,
        "encoding": "utf-8",
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s - %(levelprefix)s %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "use_colors": False,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(asctime)s - %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "use_colors": False,
            },
            "file_format": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
            },
            "file": dict(file_handler),
            "access_file": dict(file_handler),
        },
        "loggers": {
            "uvicorn": {"handlers": ["default", "file"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default", "file"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access", "access_file"], "level": "INFO", "propagate": False},
        },
    }


if __name__ == "__main__":
    logs_dir = os.path.join(os.path.dirname(__file__), "logs")
    os.makedirs(logs_dir, exist_ok=True)

    log_datetime = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"clubhouse_{log_datetime}.log")

    sys.stdout = TeeOutput(log_path, sys.__stdout__)
    sys.stderr = TeeOutput(log_path, sys.__stderr__)

    print("=" * 60)
    print("Clubhouse Gym API Starting...")
    print(f"Log file: {log_path}")
    print("=" * 60)

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8002)),
        workers=1,
        log_config=build_log_config(log_path),
        access_log=True,
    )
