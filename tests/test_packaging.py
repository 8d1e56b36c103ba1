import re
from pathlib import Path


PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def _dependencies() -> list:
    text = PYPROJECT.read_text(encoding="utf-8")
    block = re.search(r"^dependencies = \[(.*?)^\]", text, re.S | re.M).group(1)
    return re.findall(r'"([^"]+)"', block)


def test_runtime_dependencies():
    names = {re.split(r"[<>=\[]", dep)[0] for dep in _dependencies()}

    # Redis only reaches the tree as the Celery broker extra
    assert "redis" not in names
    assert any(dep.startswith("celery[redis]") for dep in _dependencies())
    assert {"alembic", "sqlalchemy", "confluent-kafka", "stripe", "structlog"} <= names
