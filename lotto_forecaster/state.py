"""Persisted learning state: the best profile seen so far, reused as a warm start."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from .draws import DrawRecord
from .errors import StateError
from .predictor import PredictionOutput, profile_overlap_map, score_prediction_quality
from .rng import hash_string_to_seed
from .scoring import WEIGHT_PROFILES, WeightProfile, sanitize_weight_profile

STATE_VERSION = 1


def data_signature(draws: Sequence[DrawRecord]) -> str:
    """count:first_date:last_date:hash over every draw signature"""
    if not draws:
        return '0:::00000000'
    digest = hash_string_to_seed('|'.join(d.signature() for d in draws))
    return f"{len(draws)}:{draws[0].date}:{draws[-1].date}:{digest:08x}"


@dataclass(frozen=True)
class LearningState:
    updated_at: str
    draw_count: int
    pool_size: int
    data_signature: str
    score: float
    best_profile: WeightProfile
    profile_overlaps: Dict[str, float] = field(default_factory=dict)
    version: int = STATE_VERSION

    def to_dict(self) -> Dict:
        return {
            'version': self.version,
            'updatedAt': self.updated_at,
            'drawCount': self.draw_count,
            'poolSize': self.pool_size,
            'dataSignature': self.data_signature,
            'score': self.score,
            'bestProfile': self.best_profile.to_dict(),
            'profileOverlaps': dict(self.profile_overlaps),
        }

    @classmethod
    def from_dict(cls, raw: Dict) -> 'LearningState':
        try:
            return cls(
                version=int(raw['version']),
                updated_at=str(raw['updatedAt']),
                draw_count=int(raw['drawCount']),
                pool_size=int(raw['poolSize']),
                data_signature=str(raw['dataSignature']),
                score=float(raw['score']),
                best_profile=sanitize_weight_profile(raw['bestProfile'], WEIGHT_PROFILES[0]),
                profile_overlaps={str(k): float(v) for k, v in (raw.get('profileOverlaps') or {}).items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateError(f"Malformed learning state: {str(e)}")


def state_from_prediction(prediction: PredictionOutput, draws: Sequence[DrawRecord]) -> LearningState:
    bt = prediction.backtest
    return LearningState(
        updated_at=datetime.now().isoformat(timespec='seconds'),
        draw_count=len(draws),
        pool_size=bt.final_diagnostics.pool_size,
        data_signature=data_signature(draws),
        score=score_prediction_quality(prediction),
        best_profile=bt.final_best_profile,
        profile_overlaps=profile_overlap_map(prediction),
    )


class LearningStateStore:
    """One JSON snapshot on disk, only ever replaced by a better one"""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[LearningState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Could not read learning state {self.path}: {str(e)}")
        if not isinstance(raw, dict):
            raise StateError(f"Learning state {self.path} must hold a JSON object")
        return LearningState.from_dict(raw)

    def _compatible(self, state: Optional[LearningState], pool_size: int) -> bool:
        return state is not None and state.version == STATE_VERSION and state.pool_size == pool_size

    def save_if_better(self, candidate: LearningState) -> bool:
        """Write `candidate` unless a compatible snapshot already scores at least as high"""
        current = self.load()
        if self._compatible(current, candidate.pool_size) and current.score >= candidate.score:
            logging.info(f"Kept learning state (score {current.score:.1f} >= {candidate.score:.1f})")
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(candidate.to_dict(), f, indent=2)
        logging.info(f"Saved learning state to {self.path} (score {candidate.score:.1f})")
        return True

    def warm_start_for(self, pool_size: int) -> Optional[Tuple[WeightProfile, Dict[str, float]]]:
        state = self.load()
        if not self._compatible(state, pool_size):
            return None
        return state.best_profile, dict(state.profile_overlaps)
