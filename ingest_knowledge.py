from knowledge_ingest.cli import main as _cli_main
from knowledge_ingest.environment import EnvironmentManager
from knowledge_ingest.pipeline import ingest_knowledge

__all__ = ["create_store", "ingest_knowledge", "main"]


def main() -> None:
    """Compatibility wrapper that delegates to `knowledge_ingest.cli.main`."""
    _cli_main()


def create_store():
    """Convenience helper returning an unopened store for the configured database."""
    return EnvironmentManager().create_store()


if __name__ == "__main__":
    main()
