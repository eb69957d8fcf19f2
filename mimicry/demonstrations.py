"""
Human Demonstration Capture & Curation
======================================

Turns a live stream of (sensor, action) samples from a human-controlled
agent into durable, quality-ranked training material.

1. Scoring: every sample gets a quality in [0.1, 5.0] from task heuristics
2. Filtering: idle, duplicate and low-quality samples are dropped
3. Retention: only the top-K sessions by total fitness stay on disk

Session files are plain JSON:
    {sessionName, timestamp, totalFitness, sessionDuration, sequence,
     frames: [{sensorInputs, humanActions, frameQuality, timestamp}]}

`sequence` records insertion order so equal-fitness ties survive a reload;
files without it are ordered by timestamp and then by name.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ImitationConfig

logger = logging.getLogger(__name__)

MIN_FRAME_QUALITY = 0.1
MAX_FRAME_QUALITY = 5.0

# Action vector layout
FORWARD, TURN_LEFT, TURN_RIGHT, JUMP = range(4)


def _fit_width(values: Sequence[float], width: int) -> Tuple[float, ...]:
    """Truncate or zero-pad to exactly `width` floats."""
    out = np.zeros(width)
    arr = np.asarray(values if values is not None else [], dtype=np.float64).ravel()[:width]
    out[:arr.size] = arr
    return tuple(float(v) for v in out)


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class DemonstrationFrame:
    """One recorded sample. Immutable once recorded."""
    sensor_inputs: Tuple[float, ...]
    human_actions: Tuple[float, ...]
    frame_quality: float = 1.0
    timestamp: float = 0.0

    @classmethod
    def create(cls, sensors: Sequence[float], actions: Sequence[float],
               quality: float = 1.0, timestamp: float = 0.0,
               sensor_width: int = 8, action_width: int = 4) -> 'DemonstrationFrame':
        """Fit vectors to the configured widths and clamp the quality."""
        return cls(
            sensor_inputs=_fit_width(sensors, sensor_width),
            human_actions=_fit_width(actions, action_width),
            frame_quality=float(np.clip(quality, MIN_FRAME_QUALITY, MAX_FRAME_QUALITY)),
            timestamp=float(timestamp),
        )

    def sensor(self, index: int) -> float:
        return self.sensor_inputs[index] if index < len(self.sensor_inputs) else 0.0

    def action(self, index: int) -> float:
        return self.human_actions[index] if index < len(self.human_actions) else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sensorInputs': list(self.sensor_inputs),
            'humanActions': list(self.human_actions),
            'frameQuality': self.frame_quality,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sensor_width: int = 8,
                  action_width: int = 4) -> 'DemonstrationFrame':
        return cls.create(
            data['sensorInputs'],
            data['humanActions'],
            quality=data.get('frameQuality', 1.0),
            timestamp=data.get('timestamp', 0.0),
            sensor_width=sensor_width,
            action_width=action_width,
        )


@dataclass
class DemonstrationSession:
    """Ordered frames recorded during one stretch of human control."""
    session_name: str
    frames: List[DemonstrationFrame] = field(default_factory=list)
    total_fitness: float = 0.0
    session_duration: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now().strftime("%Y-%m-%d %H:%M:%S"))

    # Position in the store's insertion order, assigned when first persisted
    sequence: Optional[int] = field(default=None, compare=False)

    # Where the session is persisted, if it is
    file_path: Optional[Path] = field(default=None, repr=False, compare=False)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    def average_quality(self) -> float:
        if not self.frames:
            return 0.0
        return float(np.mean([f.frame_quality for f in self.frames]))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'sessionName': self.session_name,
            'timestamp': self.timestamp,
            'totalFitness': self.total_fitness,
            'sessionDuration': self.session_duration,
            'frames': [f.to_dict() for f in self.frames],
        }
        if self.sequence is not None:
            data['sequence'] = self.sequence
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], sensor_width: int = 8,
                  action_width: int = 4) -> 'DemonstrationSession':
        frames = [
            DemonstrationFrame.from_dict(f, sensor_width, action_width)
            for f in data['frames']
        ]
        return cls(
            session_name=str(data['sessionName']),
            frames=frames,
            total_fitness=float(data.get('totalFitness', 0.0)),
            session_duration=float(data.get('sessionDuration', 0.0)),
            timestamp=str(data.get('timestamp', '')),
            sequence=int(data['sequence']) if data.get('sequence') is not None else None,
        )


# =============================================================================
# QUALITY SCORING
# =============================================================================

@dataclass
class FrameQualityScorer:
    """
    Task heuristics for how instructive a sample is.

    Sensors 0-4 are obstacle rays (higher = closer), 5 is the low-obstacle
    ray and 6 the high-obstacle ray. Exact bonus magnitudes are game
    specific; only the clamp to [0.1, 5.0] is a hard contract.
    """
    jump_bonus: float = 1.5
    checkpoint_bonus: float = 2.0
    collision_penalty: float = 0.5
    obstacle_bonus: float = 0.5
    obstacle_sensitivity: float = 0.3
    front_danger: float = 0.7

    @classmethod
    def from_config(cls, config: ImitationConfig) -> 'FrameQualityScorer':
        return cls(
            jump_bonus=config.jump_bonus,
            checkpoint_bonus=config.checkpoint_bonus,
            collision_penalty=config.collision_penalty,
        )

    def score(self, sensors: Sequence[float], actions: Sequence[float],
              near_checkpoint: bool = False) -> float:
        s = _fit_width(sensors, max(len(sensors), 7))
        a = _fit_width(actions, max(len(actions), 4))

        quality = 1.0

        near_obstacle = any(v > self.obstacle_sensitivity for v in s[:5])
        if near_obstacle:
            # Acting near obstacles is the interesting part of a demo
            quality += self.obstacle_bonus

            # Jumping a low obstacle that has no high part
            if a[JUMP] > 0.5 and s[5] > self.obstacle_sensitivity and s[6] < self.obstacle_sensitivity:
                quality += self.jump_bonus

        if near_checkpoint:
            quality += self.checkpoint_bonus * 0.1

        # Driving forward into a wall right in front
        if s[2] > self.front_danger and a[FORWARD] > 0.5:
            quality *= self.collision_penalty

        return float(np.clip(quality, MIN_FRAME_QUALITY, MAX_FRAME_QUALITY))


def _natural_key(name: str) -> List[Union[int, str]]:
    """Split digit runs out so Demo_2 sorts before Demo_10."""
    return [int(part) if part.isdigit() else part for part in re.split(r'(\d+)', name)]


def _insertion_key(session: 'DemonstrationSession'):
    # Files written before sequence numbers existed come first, ordered by
    # recording time and then name
    return (
        session.sequence is not None,
        session.sequence or 0,
        session.timestamp,
        _natural_key(session.file_path.name if session.file_path else session.session_name),
    )


def actions_from_controls(horizontal: float, vertical: float, jump: bool) -> List[float]:
    """
    Map operator axes onto the network's action vector.

    horizontal: -1 (left) .. 1 (right); vertical: -1 (back) .. 1 (forward)
    """
    return [
        float(np.clip(vertical, 0.0, 1.0)),
        float(np.clip(-horizontal, 0.0, 1.0)),
        float(np.clip(horizontal, 0.0, 1.0)),
        1.0 if jump else 0.0,
    ]


# =============================================================================
# STORE
# =============================================================================

class DemonstrationStore:
    """
    Records, persists and ranks demonstration sessions.

    Recording:
        store.start_session()
        store.record_frame(sensors, actions, position=(x, y, z))
        store.finalize_session(total_fitness=npc.fitness)

    At most `max_demonstrations_to_keep` sessions are kept, ranked by total
    fitness with ties going to the earlier session.
    """

    def __init__(
        self,
        directory: Union[str, Path] = "./demonstrations",
        config: Optional[ImitationConfig] = None,
        scorer: Optional[FrameQualityScorer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or ImitationConfig()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.scorer = scorer or FrameQualityScorer.from_config(self.config)
        self.clock = clock

        # Persisted sessions in insertion order
        self._sessions: List[DemonstrationSession] = []

        # Active recording state
        self._current: Optional[DemonstrationSession] = None
        self._last_position: Optional[np.ndarray] = None
        self._last_sensors = np.zeros(self.config.sensor_width)
        self._last_actions = np.zeros(self.config.action_width)

        # Statistics
        self.total_frames_recorded = 0
        self.current_session_frames = 0
        self.rejected_frames = 0
        self.rejected_sessions = 0

    @property
    def max_sessions(self) -> int:
        return self.config.max_demonstrations_to_keep

    @property
    def sessions(self) -> List[DemonstrationSession]:
        """Persisted sessions, best first."""
        return self._ranked(self._sessions)

    @property
    def is_recording(self) -> bool:
        return self._current is not None

    # ========== Recording ==========

    def start_session(self, name: Optional[str] = None,
                      position: Optional[Sequence[float]] = None) -> DemonstrationSession:
        """Begin a new session, discarding any unfinished one."""
        if self._current is not None:
            logger.warning("Discarding unfinished session %s", self._current.session_name)

        name = name or f"Demo_{datetime.now():%Y%m%d_%H%M%S}"
        self._current = DemonstrationSession(session_name=name)
        self._last_position = None if position is None else np.asarray(position, dtype=np.float64)
        self._last_sensors = np.zeros(self.config.sensor_width)
        self._last_actions = np.zeros(self.config.action_width)
        self.current_session_frames = 0

        logger.info("Started demonstration session %s", name)
        return self._current

    def record_frame(
        self,
        sensors: Sequence[float],
        actions: Sequence[float],
        position: Optional[Sequence[float]] = None,
        near_checkpoint: bool = False,
    ) -> bool:
        """
        Score a sample and keep it if it passes the filters.

        A session is started automatically if none is active. Without a
        position the movement filter cannot be evaluated and is skipped.
        """
        if self._current is None:
            self.start_session(position=position)

        cfg = self.config
        sensor_vec = np.asarray(_fit_width(sensors, cfg.sensor_width))
        action_vec = np.asarray(_fit_width(actions, cfg.action_width))
        pos = None if position is None else np.asarray(position, dtype=np.float64)

        quality = self.scorer.score(sensor_vec, action_vec, near_checkpoint)

        if not self._should_record(sensor_vec, action_vec, pos, quality):
            self.rejected_frames += 1
            return False

        frame = DemonstrationFrame.create(
            sensor_vec, action_vec, quality, self.clock(),
            cfg.sensor_width, cfg.action_width,
        )
        self._current.frames.append(frame)
        self.current_session_frames += 1
        self.total_frames_recorded += 1

        self._last_sensors = sensor_vec
        self._last_actions = action_vec
        if pos is not None:
            self._last_position = pos
        return True

    def _should_record(self, sensors: np.ndarray, actions: np.ndarray,
                       position: Optional[np.ndarray], quality: float) -> bool:
        cfg = self.config

        if quality < cfg.min_record_quality:
            return False

        # Idle frames: allowed only when jumping in place
        jumping = actions.size > JUMP and actions[JUMP] >= 0.5
        if position is not None and self._last_position is not None:
            moved = float(np.linalg.norm(position - self._last_position))
            if moved < cfg.min_movement_threshold and not jumping:
                return False

        # Duplicate frames
        change = np.abs(sensors - self._last_sensors).sum() + np.abs(actions - self._last_actions).sum()
        if change < cfg.min_input_change_threshold:
            return False

        return True

    def finalize_session(self, total_fitness: float = 0.0) -> Optional[DemonstrationSession]:
        """
        Close the active session and hand it to the retention policy.

        Returns the session if it was persisted, None if it was empty or did
        not make the top-K.
        """
        session = self._current
        self._current = None
        self._last_position = None
        if session is None:
            return None

        session.total_fitness = float(total_fitness)
        if session.frames:
            session.session_duration = max(0.0, session.frames[-1].timestamp - session.frames[0].timestamp)

        logger.info(
            "Recording stopped: %s, %d frames, fitness %.1f",
            session.session_name, session.frame_count, session.total_fitness,
        )

        if not session.frames:
            logger.warning("Not saving empty demonstration %s", session.session_name)
            return None

        return session if self.add_session(session) else None

    # ========== Retention ==========

    @staticmethod
    def _ranked(sessions: List[DemonstrationSession]) -> List[DemonstrationSession]:
        # sorted() is stable: equal fitness keeps insertion order
        return sorted(sessions, key=lambda s: -s.total_fitness)

    def add_session(self, session: DemonstrationSession) -> bool:
        """
        Insert a finished session under the top-K policy.

        Sessions pushed out of the top-K are deleted from disk. A new session
        that does not make the cut is never written, and one that cannot be
        written leaves the retained sessions alone.
        """
        if not self.config.auto_manage_demo_limit:
            if not self._write(session):
                self.rejected_sessions += 1
                return False
            self._sessions.append(session)
            return True

        candidates = self._sessions + [session]
        ranked = self._ranked(candidates)
        keep_ids = {id(s) for s in ranked[:self.max_sessions]}

        if id(session) not in keep_ids:
            self.rejected_sessions += 1
            logger.info(
                "Demonstration %s rejected (fitness %.1f) - not in the best %d",
                session.session_name, session.total_fitness, self.max_sessions,
            )
        elif not self._write(session):
            # Nothing is evicted until the newcomer is safely on disk
            self.rejected_sessions += 1
            return False

        for evicted in ranked[self.max_sessions:]:
            if evicted is not session:
                self._delete(evicted)

        self._sessions = [s for s in candidates if id(s) in keep_ids]
        return id(session) in keep_ids

    def cleanup_excess(self) -> int:
        """Prune the directory down to the best K sessions. Returns files deleted."""
        self.load_all()
        if len(self._sessions) <= self.max_sessions:
            return 0

        ranked = self._ranked(self._sessions)
        keep = ranked[:self.max_sessions]
        deleted = 0
        for session in ranked[self.max_sessions:]:
            if self._delete(session):
                deleted += 1

        keep_ids = {id(s) for s in keep}
        self._sessions = [s for s in self._sessions if id(s) in keep_ids]
        logger.info("Cleanup kept %d best demonstrations, deleted %d", len(keep), deleted)
        return deleted

    # ========== File I/O ==========

    def _unique_path(self, session: DemonstrationSession) -> Path:
        path = self.directory / f"{session.session_name}.json"
        taken = {s.file_path for s in self._sessions}
        counter = 2
        while path in taken or (path.exists() and path != session.file_path):
            path = self.directory / f"{session.session_name}_{counter}.json"
            counter += 1
        return path

    def _next_sequence(self) -> int:
        known = [s.sequence for s in self._sessions if s.sequence is not None]
        return max(known) + 1 if known else 0

    def _write(self, session: DemonstrationSession) -> bool:
        """Persist one session. Returns False (and logs) when the file cannot be written."""
        new_file = session.file_path is None
        path = session.file_path or self._unique_path(session)
        previous_sequence = session.sequence
        if session.sequence is None:
            session.sequence = self._next_sequence()

        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(session.to_dict(), f, indent=2)
        except OSError as e:
            logger.warning("Failed to save demonstration %s: %s", path, e)
            session.sequence = previous_sequence
            if new_file and path.exists():
                try:
                    path.unlink()
                except OSError as cleanup_error:
                    logger.error("Failed to remove partial file %s: %s", path, cleanup_error)
            return False

        session.file_path = path
        logger.info(
            "Saved demonstration %s (%d frames, fitness %.1f)",
            path.name, session.frame_count, session.total_fitness,
        )
        return True

    def _delete(self, session: DemonstrationSession) -> bool:
        path = session.file_path
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error("Failed to delete demonstration %s: %s", path, e)
            return False
        logger.info("Deleted demonstration %s (fitness %.1f)", path.name, session.total_fitness)
        session.file_path = None
        return True

    def load_session(self, path: Union[str, Path]) -> Optional[DemonstrationSession]:
        """Read one session file; malformed or empty files give None."""
        path = Path(path)
        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
            session = DemonstrationSession.from_dict(
                data, self.config.sensor_width, self.config.action_width
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping unreadable demonstration %s: %s", path, e)
            return None

        if not session.frames:
            logger.warning("Skipping demonstration without frames: %s", path)
            return None

        session.file_path = path
        return session

    def load_all(self) -> List[DemonstrationSession]:
        """Reload every session in the directory. Returns them best first."""
        loaded = []
        for path in sorted(self.directory.glob("*.json")):
            session = self.load_session(path)
            if session is not None:
                loaded.append(session)

        loaded.sort(key=_insertion_key)
        self._sessions = loaded
        logger.info("Loaded %d demonstrations from %s", len(loaded), self.directory)
        return self.sessions

    def clear(self):
        """Forget loaded sessions without touching the files."""
        self._sessions = []

    # ========== Queries ==========

    def get_best(self) -> Optional[DemonstrationSession]:
        ranked = self.sessions
        return ranked[0] if ranked else None

    def get_top(self, n: int) -> List[DemonstrationSession]:
        return self.sessions[:max(0, n)]

    def in_insertion_order(self) -> List[DemonstrationSession]:
        return list(self._sessions)

    def total_frames_available(self) -> int:
        return sum(s.frame_count for s in self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def get_stats(self) -> Dict[str, Any]:
        best = self.get_best()
        return {
            'sessions': len(self._sessions),
            'total_frames': self.total_frames_available(),
            'best_fitness': best.total_fitness if best else None,
            'total_frames_recorded': self.total_frames_recorded,
            'rejected_frames': self.rejected_frames,
            'rejected_sessions': self.rejected_sessions,
            'recording': self.is_recording,
        }
