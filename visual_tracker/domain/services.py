from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence

from .models import (
    AggregationMode,
    CohortGroup,
    Domain,
    ExpertiseCheckScore,
    LearningObjective,
    ProgressStatus,
    Student,
)

LeafLookup = Callable[[str], int | None]

DEFAULT_MAX_DEPTH = 64


def clamp_percentage(value: int | None) -> int:
    if value is None:
        return 0
    return max(0, min(100, int(value)))


def status_for(percentage: int) -> ProgressStatus:
    return ProgressStatus.from_percentage(percentage)


def floor_average(values: Iterable[int]) -> int:
    """Integer mean rounded down; an empty input averages to 0."""
    total = 0
    count = 0
    for value in values:
        total += value
        count += 1
    if count == 0:
        return 0
    return total // count


class ObjectiveTree:
    """
    Parent -> children index over a flat list of objectives.

    Archived objectives are dropped. A parent reference is resolved through
    ``parent_id`` when it is set and through ``parent_code`` otherwise; both
    are normalized to the parent's code. Objectives whose parent cannot be
    resolved among the active set are roots.
    """

    def __init__(
        self,
        objectives: Iterable[LearningObjective],
        max_depth: int = DEFAULT_MAX_DEPTH,
        logger: logging.Logger | None = None,
    ):
        self.max_depth = max_depth
        self.logger = logger or logging.getLogger(__name__)

        active = [o for o in objectives if not o.is_archived]
        self._by_code: dict[str, LearningObjective] = {o.code: o for o in active}
        self._by_id: dict[int, LearningObjective] = {o.id: o for o in active if o.id is not None}

        children: dict[str, list[LearningObjective]] = defaultdict(list)
        roots: list[LearningObjective] = []
        for objective in active:
            parent = self.parent_code_of(objective)
            if parent is None:
                roots.append(objective)
            else:
                children[parent].append(objective)

        self._children = {code: sorted(kids, key=_sibling_key) for code, kids in children.items()}
        self._roots = sorted(roots, key=_sibling_key)

    def __len__(self) -> int:
        return len(self._by_code)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def get(self, code: str) -> LearningObjective | None:
        return self._by_code.get(code)

    def parent_code_of(self, objective: LearningObjective) -> str | None:
        if objective.parent_id is not None:
            parent = self._by_id.get(objective.parent_id)
            return parent.code if parent is not None else None
        if objective.parent_code is not None and objective.parent_code in self._by_code:
            return objective.parent_code
        return None

    def children_of(self, objective: LearningObjective | str) -> list[LearningObjective]:
        code = objective if isinstance(objective, str) else objective.code
        return list(self._children.get(code, ()))

    def is_leaf(self, objective: LearningObjective | str) -> bool:
        code = objective if isinstance(objective, str) else objective.code
        return code not in self._children

    def roots(self) -> list[LearningObjective]:
        return list(self._roots)

    def leaves(self) -> list[LearningObjective]:
        return sorted(
            (o for o in self._by_code.values() if o.code not in self._children), key=_sibling_key
        )

    def walk(self) -> Iterable[tuple[LearningObjective, int]]:
        """Depth-first (objective, depth) pairs in display order."""
        seen: set[str] = set()
        stack = [(root, 0) for root in reversed(self._roots)]
        while stack:
            objective, depth = stack.pop()
            if objective.code in seen:
                continue
            seen.add(objective.code)
            yield objective, depth
            for child in reversed(self._children.get(objective.code, ())):
                stack.append((child, depth + 1))

    def percentage(self, objective: LearningObjective | str, leaf_lookup: LeafLookup) -> int:
        """
        Completion of ``objective`` for one subject.

        A leaf reports ``leaf_lookup(code)`` (0 when absent). A category is the
        floor average of its immediate children, so every child weighs the
        same regardless of how many leaves sit beneath it.
        """
        code = objective if isinstance(objective, str) else objective.code
        return self._percentage(code, leaf_lookup, {}, set(), 0)

    def _percentage(
        self,
        code: str,
        leaf_lookup: LeafLookup,
        memo: dict[str, int],
        path: set[str],
        depth: int,
    ) -> int:
        if code in memo:
            return memo[code]
        if code in path:
            self.logger.warning("Objective cycle detected at %s; counting it as 0", code)
            return 0
        if depth > self.max_depth:
            self.logger.warning(
                "Objective %s is deeper than %d levels; counting it as 0", code, self.max_depth
            )
            return 0

        children = self._children.get(code)
        if not children:
            value = clamp_percentage(leaf_lookup(code))
        else:
            path.add(code)
            total = sum(
                self._percentage(child.code, leaf_lookup, memo, path, depth + 1)
                for child in children
            )
            path.discard(code)
            value = total // len(children)

        memo[code] = value
        return value


def _sibling_key(objective: LearningObjective) -> tuple[int, str]:
    return (objective.sort_order, objective.code)


class ProgressCalculator:
    """
    Roll-ups over one snapshot of the rubric.

    Builds the objective index once and answers per-student, per-group,
    per-cohort and per-expertise-check questions against it.
    """

    def __init__(
        self,
        objectives: Iterable[LearningObjective] | ObjectiveTree,
        max_depth: int = DEFAULT_MAX_DEPTH,
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        if isinstance(objectives, ObjectiveTree):
            self.tree = objectives
        else:
            self.tree = ObjectiveTree(objectives, max_depth=max_depth, logger=self.logger)

    def objective_percentage(self, student: Student, objective: LearningObjective | str) -> int:
        lookup = student.progress_lookup()
        return self.tree.percentage(objective, lookup.get)

    def student_overall(self, student: Student) -> int:
        lookup = student.progress_lookup()
        return floor_average(self.tree.percentage(root, lookup.get) for root in self.tree.roots())

    def cohort_objective_average(
        self, objective: LearningObjective | str, students: Sequence[Student]
    ) -> int:
        return floor_average(self.objective_percentage(s, objective) for s in students)

    def cohort_overall(self, students: Sequence[Student]) -> int:
        return floor_average(self.student_overall(s) for s in students)

    def group_overall(self, group: CohortGroup | int, students: Sequence[Student]) -> int:
        group_id = group if isinstance(group, int) else group.id
        members = [s for s in students if s.in_group(group_id)]
        return self.cohort_overall(members)

    def expertise_check_reviewer_percentage(
        self,
        domain: Domain | int,
        objective: LearningObjective | str,
        scores: Iterable[ExpertiseCheckScore],
    ) -> int:
        domain_id = domain if isinstance(domain, int) else domain.id
        lookup = {s.objective_code: s.value for s in scores if s.domain_id == domain_id}
        return self.tree.percentage(objective, lookup.get)

    def domain_objective_percentage(
        self,
        domain: Domain,
        objective: LearningObjective | str,
        students: Sequence[Student],
        scores: Iterable[ExpertiseCheckScore] = (),
    ) -> int:
        """
        Expertise-check completion for ``objective``.

        ``students`` should already be limited to the domain's members; they
        are only consulted in computed mode.
        """
        match domain.overall_mode:
            case AggregationMode.EXPERT_REVIEW:
                return self.expertise_check_reviewer_percentage(domain, objective, scores)
            case AggregationMode.COMPUTED:
                pass
            case unknown:
                self.logger.warning(
                    "Unknown aggregation mode %r for expertise check %s; using computed",
                    unknown,
                    domain.id,
                )
        return self.cohort_objective_average(objective, students)

    def domain_overall(
        self,
        domain: Domain,
        students: Sequence[Student],
        scores: Iterable[ExpertiseCheckScore] = (),
    ) -> int:
        scores = list(scores)
        return floor_average(
            self.domain_objective_percentage(domain, root, students, scores)
            for root in self.tree.roots()
        )


# ---------- Functional entry points over a plain objective list ----------


def children_of(
    objective: LearningObjective, all_objectives: Iterable[LearningObjective]
) -> list[LearningObjective]:
    return ObjectiveTree(all_objectives).children_of(objective)


def percentage(
    objective: LearningObjective | str,
    all_objectives: Iterable[LearningObjective],
    leaf_lookup: LeafLookup,
) -> int:
    return ObjectiveTree(all_objectives).percentage(objective, leaf_lookup)


def cohort_average(
    objective: LearningObjective | str,
    students: Sequence[Student],
    all_objectives: Iterable[LearningObjective],
) -> int:
    return ProgressCalculator(all_objectives).cohort_objective_average(objective, students)


def student_overall(student: Student, all_objectives: Iterable[LearningObjective]) -> int:
    return ProgressCalculator(all_objectives).student_overall(student)


def group_overall(
    group: CohortGroup | int,
    students: Sequence[Student],
    all_objectives: Iterable[LearningObjective],
) -> int:
    return ProgressCalculator(all_objectives).group_overall(group, students)


def cohort_overall(students: Sequence[Student], all_objectives: Iterable[LearningObjective]) -> int:
    return ProgressCalculator(all_objectives).cohort_overall(students)
