"""
Engine Persistence Module

Full Python object graph serialization of an ImitationLearningEngine
using dill, with a JSON metadata sidecar and numbered backup rotation.

An in-flight validation cycle is never checkpointed: a restored engine
starts idle and the abandoned backups are simply dropped.
"""

import copy
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import dill

from .validation import ValidationCycle

logger = logging.getLogger(__name__)


class EnginePersistence:
    """
    Saves and loads engine state.

    Files:
        <name>.engine          dill payload
        <name>.meta.json       version, timestamp, generation, strength, size
        <name>.backup1..N      previous payloads, newest first
    """

    VERSION = "1.0"

    def __init__(self, save_directory: Union[str, Path] = "./engine_saves", max_backups: int = 5):
        self.save_directory = Path(save_directory)
        self.save_directory.mkdir(parents=True, exist_ok=True)
        self.max_backups = max_backups
        self._save_count = 0

    def save(self, engine, filepath: Optional[Union[str, Path]] = None,
             create_backup: bool = True) -> str:
        """
        Save engine state to file.

        Returns:
            Path to saved file
        """
        if filepath is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = self.save_directory / f"engine_{timestamp}.engine"
        else:
            filepath = Path(filepath)

        if create_backup and filepath.exists():
            self._rotate_backups(filepath)

        save_data = {
            'version': self.VERSION,
            'saved_at': datetime.now().isoformat(),
            'python_version': f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            'save_count': self._save_count,
            'engine': self._detach_validation(engine),
        }

        with open(filepath, 'wb') as f:
            dill.dump(save_data, f, protocol=dill.HIGHEST_PROTOCOL)
        self._save_count += 1

        meta_path = filepath.with_suffix('.meta.json')
        with open(meta_path, 'w', encoding='utf-8') as f:
            json.dump({
                'version': save_data['version'],
                'saved_at': save_data['saved_at'],
                'save_count': save_data['save_count'],
                'generation': engine.last_generation_seen,
                'imitation_strength': engine.imitation_strength,
                'total_applications': engine.total_applications,
                'file_size_bytes': os.path.getsize(filepath),
            }, f, indent=2)

        logger.info("Saved engine checkpoint to %s", filepath)
        return str(filepath)

    @staticmethod
    def _detach_validation(engine):
        """Shallow copy of the engine with an idle validation cycle."""
        if engine.validation.is_pending:
            logger.warning("Pending validation cycle is not checkpointed; it will be abandoned on load")
        detached = copy.copy(engine)
        detached.validation = ValidationCycle()
        return detached

    def load(self, filepath: Union[str, Path]) -> Any:
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Save file not found: {filepath}")

        with open(filepath, 'rb') as f:
            save_data = dill.load(f)

        version = save_data.get('version', '1.0')
        if version != self.VERSION:
            logger.warning("Checkpoint %s has version %s, expected %s", filepath, version, self.VERSION)

        engine = save_data['engine']
        logger.info("Loaded engine checkpoint from %s", filepath)
        return engine

    def _rotate_backups(self, filepath: Path):
        """Shift .backupN files up by one and move the current file to .backup1."""
        if self.max_backups <= 0:
            return

        oldest = filepath.with_suffix(f'.backup{self.max_backups}')
        if oldest.exists():
            oldest.unlink()
        for i in range(self.max_backups - 1, 0, -1):
            old_backup = filepath.with_suffix(f'.backup{i}')
            if old_backup.exists():
                old_backup.rename(filepath.with_suffix(f'.backup{i + 1}'))

        filepath.rename(filepath.with_suffix('.backup1'))

    def list_saves(self) -> List[Dict[str, Any]]:
        """All checkpoints, newest first."""
        saves = []
        for path in self.save_directory.glob("*.engine"):
            meta_path = path.with_suffix('.meta.json')
            meta = {}
            if meta_path.exists():
                try:
                    with open(meta_path, encoding='utf-8') as f:
                        meta = json.load(f)
                except (OSError, ValueError) as e:
                    logger.warning("Unreadable checkpoint metadata %s: %s", meta_path, e)
            saves.append({
                'path': str(path),
                'name': path.stem,
                'meta': meta,
            })
        return sorted(saves, key=lambda x: x['meta'].get('saved_at', ''), reverse=True)

    def get_latest_save(self) -> Optional[str]:
        saves = self.list_saves()
        if saves:
            return saves[0]['path']
        return None


def save_engine(engine, filepath: Optional[Union[str, Path]] = None,
                directory: Union[str, Path] = "./engine_saves") -> str:
    return EnginePersistence(save_directory=directory).save(engine, filepath)


def load_engine(filepath: Union[str, Path]):
    return EnginePersistence(save_directory=Path(filepath).parent).load(filepath)
