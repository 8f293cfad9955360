"""Write the development .env file and create the character database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from character_builder import create_app
from character_builder.extensions import db
from ollama_client import OllamaClient

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings the character builder needs "
            "and initialize the SQLite database."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="wsgi.py",
        help="Entry point used by Flask (default: wsgi.py)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help="Secret key for Flask sessions. If omitted, the current value in .env is kept.",
    )
    parser.add_argument(
        "--ollama-base-url",
        help="Base URL of the local Ollama server (default http://127.0.0.1:11434).",
    )
    parser.add_argument(
        "--ollama-timeout",
        type=float,
        help="Seconds to wait for a generation before giving up (unset waits indefinitely).",
    )
    parser.add_argument(
        "--batch-delay",
        type=float,
        help="Pause in seconds between batch-test generations (default 0.5).",
    )
    parser.add_argument(
        "--vocabulary-path",
        help="JSON file overriding the evaluator marker words (optional).",
    )
    parser.add_argument(
        "--database-url",
        help="Override SQLALCHEMY_DATABASE_URI / DATABASE_URL (optional).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    parser.add_argument(
        "--check-ollama",
        action="store_true",
        help="Query the Ollama server and list the models it has pulled.",
    )
    return parser.parse_args()


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_updates = {"FLASK_APP": args.flask_app}
    if args.secret_key:
        env_updates["SECRET_KEY"] = args.secret_key
    if args.ollama_base_url:
        env_updates["OLLAMA_BASE_URL"] = args.ollama_base_url
    if args.ollama_timeout is not None:
        env_updates["OLLAMA_TIMEOUT_SECONDS"] = str(args.ollama_timeout)
    if args.batch_delay is not None:
        env_updates["BATCH_TEST_DELAY_SECONDS"] = str(args.batch_delay)
    if args.vocabulary_path:
        env_updates["EVALUATION_VOCABULARY_PATH"] = args.vocabulary_path
    if args.database_url:
        env_updates["DATABASE_URL"] = args.database_url

    env_data.update(env_updates)
    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
    print("Database initialized (instance/character_builder.db).")


def report_ollama_status(base_url: str) -> None:
    status = OllamaClient(base_url).check_status()
    if not status.connected:
        print(f"Ollama is not reachable at {base_url}: {status.error}")
        return
    print(f"Ollama {status.version or '(unknown version)'} at {base_url}")
    for name in status.available_models:
        print(f"  - {name}")


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    if args.check_ollama:
        report_ollama_status(env_values.get("OLLAMA_BASE_URL", "http://127.0.0.1:11434"))

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        print(f"  {key}={env_values[key]}")


if __name__ == "__main__":
    main()
