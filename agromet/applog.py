import os
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def resolve_log_dir() -> Path:
    raw_path = os.getenv("AGROMET_LOG_DIR")
    if raw_path:
        path = Path(raw_path)
        return path if path.is_absolute() else PROJECT_ROOT / path
    return PROJECT_ROOT / "logs"


def log(message: str, name: str = "dashboard") -> None:
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = f"{ts} | {name} | {message}"
    print(line, flush=True)
    log_path = resolve_log_dir() / f"{name}.log"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as file:
            file.write(line + "\n")
    except OSError:
        # read-only deployments still get stdout
        pass
