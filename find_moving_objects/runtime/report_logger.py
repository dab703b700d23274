import json
from pathlib import Path
from typing import Any, Dict


class ReportLogger:
    """Appends one JSON line per published message, one file per topic."""

    def __init__(self, run_dir: Path, skip_empty: bool = False):
        self.topic_dir = Path(run_dir) / "topics"
        self.topic_dir.mkdir(parents=True, exist_ok=True)
        self.skip_empty = skip_empty
        self.counts: Dict[str, int] = {}

    def path_for(self, topic: str) -> Path:
        return self.topic_dir / f"{topic.strip('/').replace('/', '__') or 'root'}.jsonl"

    def publish(self, messages: Dict[str, Any], stamp: float) -> None:
        for topic, data in messages.items():
            if self.skip_empty and not data:
                continue
            record = {"stamp": round(float(stamp), 6), "topic": topic, "data": data}
            with open(self.path_for(topic), "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
            self.counts[topic] = self.counts.get(topic, 0) + 1
