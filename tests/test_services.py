from unittest.mock import MagicMock

import pytest

from visual_tracker.domain.models import (
    AggregationMode,
    CohortGroup,
    Domain,
    ExpertiseCheckScore,
    LearningObjective,
    ProgressRecord,
    ProgressStatus,
    Student,
)
from visual_tracker.domain.services import (
    ObjectiveTree,
    ProgressCalculator,
    children_of,
    clamp_percentage,
    cohort_average,
    cohort_overall,
    floor_average,
    group_overall,
    percentage,
    status_for,
    student_overall,
)


def obj(code, parent=None, sort_order=0, **kwargs):
    return LearningObjective(code=code, title=code, parent_code=parent, sort_order=sort_order, **kwargs)


def student(student_id=1, values=None, group_ids=(), domain_id=None):
    return Student(
        id=student_id,
        name=f"Student {student_id}",
        group_ids=frozenset(group_ids),
        domain_id=domain_id,
        progress=tuple(ProgressRecord(code, value) for code, value in (values or {}).items()),
    )


@pytest.fixture
def rubric_a():
    return [obj("A"), obj("A.1", "A", 0), obj("A.2", "A", 1), obj("A.3", "A", 2)]


@pytest.fixture
def rubric_b():
    return [obj("B"), obj("B.1", "B"), obj("B.1.1", "B.1", 0), obj("B.1.2", "B.1", 1)]


def test_leaf_without_value_is_zero(rubric_a):
    assert percentage("A.1", rubric_a, {}.get) == 0


@pytest.mark.parametrize("value", [0, 1, 25, 50, 75, 99, 100])
def test_leaf_reports_its_value(rubric_a, value):
    assert percentage("A.2", rubric_a, {"A.2": value}.get) == value


def test_category_is_floor_average_of_children(rubric_a):
    values = {"A.1": 40, "A.2": 60, "A.3": 100}
    assert percentage("A", rubric_a, values.get) == 66


def test_weight_is_per_child_not_per_leaf(rubric_b):
    values = {"B.1.1": 0, "B.1.2": 100}
    assert percentage("B.1", rubric_b, values.get) == 50
    assert percentage("B", rubric_b, values.get) == 50


def test_deep_subtree_counts_as_one_term():
    objectives = [
        obj("C"),
        obj("C.1", "C", 0),
        obj("C.2", "C", 1),
        *[obj(f"C.2.{i}", "C.2", i) for i in range(1, 6)],
    ]
    values = {"C.1": 100, **{f"C.2.{i}": 0 for i in range(1, 6)}}
    # one leaf at 100 and one five-leaf subtree at 0
    assert percentage("C", objectives, values.get) == 50


def test_category_without_any_values_is_zero(rubric_b):
    assert percentage("B", rubric_b, {}.get) == 0


def test_leaf_values_are_clamped(rubric_a):
    assert percentage("A.1", rubric_a, {"A.1": 250}.get) == 100
    assert percentage("A.1", rubric_a, {"A.1": -5}.get) == 0


def test_percentage_stays_in_range(rubric_a, rubric_b):
    values = {"A.1": 100, "A.2": 100, "A.3": 100, "B.1.1": 100, "B.1.2": 99}
    tree = ObjectiveTree(rubric_a + rubric_b)
    for objective, _ in tree.walk():
        assert 0 <= tree.percentage(objective, values.get) <= 100


def test_children_ordered_by_sort_order_then_code():
    objectives = [obj("X"), obj("X.b", "X", 1), obj("X.c", "X", 0), obj("X.a", "X", 1)]
    children = children_of(objectives[0], objectives)
    assert [c.code for c in children] == ["X.c", "X.a", "X.b"]


def test_archived_children_are_ignored(rubric_a):
    objectives = rubric_a[:-1] + [obj("A.3", "A", 2, is_archived=True)]
    values = {"A.1": 40, "A.2": 60, "A.3": 100}
    assert percentage("A", objectives, values.get) == 50


def test_orphans_aggregate_as_roots():
    objectives = [obj("A"), obj("A.1", "A"), obj("Z.1", "Z"), obj("Y.1", "Y", is_archived=False)]
    tree = ObjectiveTree(objectives)
    assert [o.code for o in tree.roots()] == ["A", "Y.1", "Z.1"]

    calc = ProgressCalculator(objectives)
    s = student(values={"A.1": 100, "Z.1": 50, "Y.1": 0})
    assert calc.student_overall(s) == 50


def test_child_of_archived_parent_is_a_root():
    objectives = [obj("A", is_archived=True), obj("A.1", "A")]
    tree = ObjectiveTree(objectives)
    assert [o.code for o in tree.roots()] == ["A.1"]


def test_parent_id_takes_precedence_over_parent_code():
    objectives = [
        LearningObjective(code="A", title="A", id=1),
        LearningObjective(code="B", title="B", id=2),
        LearningObjective(code="X", title="X", id=3, parent_id=2, parent_code="A"),
    ]
    tree = ObjectiveTree(objectives)
    assert [c.code for c in tree.children_of("B")] == ["X"]
    assert tree.children_of("A") == []


def test_unknown_parent_id_makes_a_root_even_with_parent_code():
    objectives = [
        LearningObjective(code="A", title="A", id=1),
        LearningObjective(code="A.1", title="A.1", id=2, parent_id=99, parent_code="A"),
    ]
    tree = ObjectiveTree(objectives)
    assert {o.code for o in tree.roots()} == {"A", "A.1"}


def test_cycle_terminates_and_logs():
    logger = MagicMock()
    objectives = [
        LearningObjective(code="P", title="P", id=1, parent_id=2),
        LearningObjective(code="Q", title="Q", id=2, parent_id=1),
        LearningObjective(code="R", title="R", id=3, parent_id=2),
    ]
    tree = ObjectiveTree(objectives, logger=logger)
    assert tree.roots() == []
    assert tree.percentage("P", {"R": 90}.get) == 45
    assert logger.warning.called


def test_depth_limit_counts_deep_nodes_as_zero():
    logger = MagicMock()
    objectives = [obj("L0")] + [obj(f"L{i}", f"L{i - 1}") for i in range(1, 6)]
    tree = ObjectiveTree(objectives, max_depth=3, logger=logger)
    assert tree.percentage("L0", {"L5": 100}.get) == 0
    assert logger.warning.called


def test_walk_yields_display_order_with_depth(rubric_a, rubric_b):
    tree = ObjectiveTree(rubric_b + rubric_a)
    walked = [(o.code, depth) for o, depth in tree.walk()]
    assert walked == [
        ("A", 0),
        ("A.1", 1),
        ("A.2", 1),
        ("A.3", 1),
        ("B", 0),
        ("B.1", 1),
        ("B.1.1", 2),
        ("B.1.2", 2),
    ]


def test_leaves_and_is_leaf(rubric_b):
    tree = ObjectiveTree(rubric_b)
    assert [o.code for o in tree.leaves()] == ["B.1.1", "B.1.2"]
    assert tree.is_leaf("B.1.1")
    assert not tree.is_leaf("B")
    assert "B.1" in tree
    assert len(tree) == 4


def test_cohort_average_empty_is_zero(rubric_a):
    assert cohort_average("A", [], rubric_a) == 0


def test_cohort_average_single_student_matches_percentage(rubric_a):
    s = student(values={"A.1": 40, "A.2": 60, "A.3": 100})
    assert cohort_average("A", [s], rubric_a) == 66


def test_cohort_average_floors(rubric_a):
    students = [student(1, {"A.1": 100}), student(2, {"A.1": 50}), student(3, {"A.1": 0})]
    assert cohort_average("A.1", students, rubric_a) == 50
    students = [student(1, {"A.1": 1}), student(2, {"A.1": 0})]
    assert cohort_average("A.1", students, rubric_a) == 0


def test_student_without_progress_has_zero_overall(rubric_a, rubric_b):
    assert student_overall(student(), rubric_a + rubric_b) == 0


def test_student_overall_averages_roots(rubric_a, rubric_b):
    s = student(values={"A.1": 100, "A.2": 100, "A.3": 100, "B.1.1": 0, "B.1.2": 100})
    assert student_overall(s, rubric_a + rubric_b) == 75


def test_group_and_cohort_overall(rubric_a):
    members = [
        student(1, {"A.1": 100, "A.2": 100, "A.3": 100}, group_ids={7}),
        student(2, {}, group_ids={7, 8}),
        student(3, {"A.1": 100}, group_ids={8}),
    ]
    group = CohortGroup(id=7, name="iOS")
    assert group_overall(group, members, rubric_a) == 50
    assert group_overall(8, members, rubric_a) == 16
    assert group_overall(99, members, rubric_a) == 0
    assert cohort_overall(members, rubric_a) == 44


def test_domain_expert_review_uses_reviewer_scores(rubric_a):
    domain = Domain(id=1, name="Tech", overall_mode=AggregationMode.EXPERT_REVIEW)
    scores = [
        ExpertiseCheckScore(1, "A.1", 100),
        ExpertiseCheckScore(1, "A.2", 50),
        ExpertiseCheckScore(2, "A.3", 100),
    ]
    members = [student(1, {"A.1": 0, "A.2": 0, "A.3": 0}, domain_id=1)]
    calc = ProgressCalculator(rubric_a)
    assert calc.domain_objective_percentage(domain, "A", members, scores) == 50
    assert calc.domain_overall(domain, members, scores) == 50


def test_domain_computed_mode_uses_students(rubric_a):
    domain = Domain(id=1, name="Tech", overall_mode=AggregationMode.COMPUTED)
    scores = [ExpertiseCheckScore(1, "A.1", 100)]
    members = [
        student(1, {"A.1": 100, "A.2": 100, "A.3": 100}, domain_id=1),
        student(2, {"A.1": 100}, domain_id=1),
    ]
    calc = ProgressCalculator(rubric_a)
    assert calc.domain_objective_percentage(domain, "A", members, scores) == 66
    assert calc.domain_objective_percentage(domain, "A", [], scores) == 0


def test_unknown_domain_mode_falls_back_to_computed(rubric_a):
    logger = MagicMock()
    domain = Domain(id=1, name="Tech", overall_mode="legacy")
    scores = [ExpertiseCheckScore(1, "A.1", 100)]
    members = [student(1, {"A.1": 100, "A.2": 100, "A.3": 100}, domain_id=1)]
    calc = ProgressCalculator(rubric_a, logger=logger)

    assert calc.domain_objective_percentage(domain, "A", members, scores) == 100
    assert calc.domain_overall(domain, [], scores) == 0
    logger.warning.assert_called()


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, ProgressStatus.NOT_STARTED),
        (1, ProgressStatus.IN_PROGRESS),
        (50, ProgressStatus.IN_PROGRESS),
        (99, ProgressStatus.IN_PROGRESS),
        (100, ProgressStatus.COMPLETE),
    ],
)
def test_status_boundaries(value, expected):
    assert status_for(value) is expected


def test_status_covers_full_range():
    for value in range(0, 101):
        status = status_for(value)
        if value == 0:
            assert status is ProgressStatus.NOT_STARTED
        elif value == 100:
            assert status is ProgressStatus.COMPLETE
        else:
            assert status is ProgressStatus.IN_PROGRESS


def test_floor_average_and_clamp():
    assert floor_average([]) == 0
    assert floor_average(iter([1, 2])) == 1
    assert clamp_percentage(None) == 0
    assert clamp_percentage(101) == 100
