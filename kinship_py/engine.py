"""Wiring of the core components around one data directory."""
from __future__ import annotations
from pathlib import Path
from typing import Optional
import logging

from .bridges import BridgeMatcher
from .classifier import RelationshipClassification, RelationshipClassifier
from .config import Config, load_config
from .duplicates import DuplicateDetector
from .events import EventBus
from .kinship import KinshipPathResolver, Locale
from .storage import GraphStore


class Engine:
    def __init__(self, config: Optional[Config] = None, root: Optional[Path] = None) -> None:
        self.config = config or load_config()
        self.events = EventBus()
        self.store = GraphStore(Path(root or self.config.data_dir), self.config, self.events)
        self.traversal = self.store.traversal
        self.classifier = RelationshipClassifier(self.store, self.config)
        self.resolver = KinshipPathResolver()
        self.duplicates = DuplicateDetector(self.store, self.config, self.events)
        self.bridges = BridgeMatcher(self.store, self.classifier, self.config)
        logging.info("kinship engine ready at %s (%d persons)", str(self.store.root), len(self.store.persons))

    def relationship(self, a: str, b: str, locale: Locale = Locale.EN) -> dict:
        """Classification of b relative to a plus its label in ``locale``."""
        c: RelationshipClassification = self.classifier.classify(a, b)
        out = c.to_dict()
        out["label"] = self.resolver.label(c, locale)
        out["inverse_label"] = self.resolver.label(c.inverse(), locale)
        out["locale"] = Locale(locale).value
        return out

    def close(self) -> None:
        self.store.close()
