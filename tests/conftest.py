import sys
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class StubGenerator:
    """Deterministic text generator that replays queued replies.

    Each queued item is either a string, an exception instance (raised) or a
    callable receiving the prompt.
    """

    def __init__(self, *replies: Union[str, Exception, Callable[[str], str]], default: str = "Score: 8/10"):
        self.replies: List[Any] = list(replies)
        self.default = default
        self.prompts: List[str] = []
        self.options: List[Optional[Mapping[str, Any]]] = []

    def queue(self, *replies: Union[str, Exception, Callable[[str], str]]) -> None:
        self.replies.extend(replies)

    def generate_text(self, prompt: str, options: Optional[Mapping[str, Any]] = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Fresh connection pool bound to the temporary database
    pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    monkeypatch.setattr(db, "_pool", pool)
    db.init()
    yield str(db_path)
    pool.close_all()


@pytest.fixture
def graph():
    from topic_graph import default_topic_graph

    return default_topic_graph()


@pytest.fixture
def small_graph():
    from topic_graph import TopicGraph

    return TopicGraph.from_dict(
        {
            "topics": ["Basics", "Loops", "Functions"],
            "prerequisites": [
                {"topic": "Loops", "prerequisite": "Basics", "weight": 0.5},
                {"topic": "Functions", "prerequisite": "Loops", "weight": 1.0},
            ],
        }
    )


@pytest.fixture
def stub_generator():
    return StubGenerator()
