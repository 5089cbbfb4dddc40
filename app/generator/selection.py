from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from domain import ChemistryBook, EmployeeSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredCandidate:
    employee: EmployeeSnapshot
    score: float


@dataclass
class SelectionResult:
    selected: List[ScoredCandidate] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def employee_ids(self) -> List[int]:
        return [candidate.employee.id for candidate in self.selected]


def rank_candidates(candidates: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    """Highest score first; ``sorted`` is stable so ties keep input order."""
    return sorted(candidates, key=lambda candidate: candidate.score, reverse=True)


def select_assignees(
    scored: Sequence[ScoredCandidate],
    required: int,
    chemistry: ChemistryBook,
    avoid_poor_chemistry: bool = True,
    *,
    context: Optional[Mapping[str, Any]] = None,
) -> SelectionResult:
    """Pick up to ``required`` candidates, steering around poor chemistry before forcing it."""
    result = SelectionResult()
    ranked = rank_candidates(scored)
    base = dict(context or {})
    skipped: List[ScoredCandidate] = []

    for candidate in ranked:
        if len(result.selected) >= required:
            break
        clashes = avoid_poor_chemistry and any(
            chemistry.conflicts(candidate.employee.id, chosen.employee.id) for chosen in result.selected
        )
        if clashes:
            skipped.append(candidate)
            continue
        result.selected.append(candidate)

    for candidate in skipped:
        if len(result.selected) >= required:
            break
        partners = [
            chosen for chosen in result.selected if chemistry.conflicts(candidate.employee.id, chosen.employee.id)
        ]
        result.selected.append(candidate)
        for partner in partners:
            logger.warning(
                "Forced employee %s alongside %s despite poor chemistry.",
                candidate.employee.id,
                partner.employee.id,
            )
            result.conflicts.append(
                {
                    **base,
                    "type": "chemistry_conflict_forced",
                    "severity": "medium",
                    "employeeId": candidate.employee.id,
                    "employeeName": candidate.employee.name,
                    "partnerId": partner.employee.id,
                    "partnerName": partner.employee.name,
                    "chemistryScore": chemistry.score(candidate.employee.id, partner.employee.id),
                    "message": "Employee assigned despite chemistry conflict due to staffing requirements.",
                }
            )

    if len(result.selected) < required:
        shortfall = required - len(result.selected)
        result.conflicts.append(
            {
                **base,
                "type": "insufficient_staff",
                "severity": "high",
                "required": required,
                "available": len(result.selected),
                "shortfall": shortfall,
                "message": f"Could not meet staffing requirement of {required}; {shortfall} short.",
            }
        )
    return result
