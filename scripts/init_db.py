import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import packages.config as config
from packages import db

def main() -> None:
    schema = db.schema_path()
    if not schema.exists():
        raise SystemExit(f"Schema not found: {schema}")

    if not db.is_postgres():
        config.DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    with db.open_db() as conn:
        db.init_schema(conn)
    target = "postgres" if db.is_postgres() else config.DB_PATH
    print(f"Initialized {target} from {schema.name}")


if __name__ == "__main__":
    main()
