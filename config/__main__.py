"""Command line interface for testing configuration loading"""
from . import load_settings, SettingsError
from pathlib import Path

EXAMPLE_SETTINGS = """[DEFAULT]
# PostgreSQL/CockroachDB URL, or memory:// for the in-process store and queue
db_url = postgresql://root@localhost:26257/marketplace?sslmode=disable
# Marketplace contract address; transfers to/from it list or delist a token
marketplace_address = 0x02E8AD0687D583e2F6A7e5b82144025f30e26aA0
retry_delay_ms = 1000
retry_backoff_factor = 2.0
max_retry_delay_ms = 60000
# 0 retries a missing target forever
max_retry_attempts = 20
max_delivery_attempts = 5
redelivery_delay_ms = 5000
visibility_timeout = 30
poll_interval_ms = 500
workers_per_queue = 1
api_enabled = false
api_host = 0.0.0.0
api_port = 8000
log_level = INFO
"""

def main():
    """Display loaded configuration"""
    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write(EXAMPLE_SETTINGS)

    try:
        settings = load_settings()
    except SettingsError as e:
        print(e)
        return

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.model_dump().items():
        print(f"{key}: {value}")

if __name__ == "__main__":
    main()
