"""
Tests for the Violation Debouncer

Only entry into a violation condition is reported.
"""

from xhoraproc.exam.models import ViolationKind
from xhoraproc.proctor.classifier import NORMAL, Classification
from xhoraproc.proctor.debouncer import ViolationDebouncer


def looking(direction):
    return Classification(
        kind=ViolationKind.LOOKING_AWAY,
        detail=direction,
        description=f"Looking {direction}"
    )


NO_FACE = Classification(kind=ViolationKind.NO_FACE, description="No face detected")
MULTIPLE = Classification(kind=ViolationKind.MULTIPLE_FACES, description="Multiple faces detected (2)")


def feed(debouncer, sequence):
    return [v for v in (debouncer.update(c) for c in sequence) if v is not None]


class TestViolationDebouncer:
    """Tests for ViolationDebouncer"""

    def test_initial_state(self):
        """Test the debouncer starts with no active condition"""
        debouncer = ViolationDebouncer("vision")

        assert debouncer.active is None
        assert debouncer.update(NORMAL) is None

    def test_persistent_condition_reported_once(self):
        """Test a repeated condition is suppressed"""
        debouncer = ViolationDebouncer()

        emitted = feed(debouncer, [NO_FACE, NO_FACE, NO_FACE])

        assert len(emitted) == 1
        assert emitted[0].kind == ViolationKind.NO_FACE
        assert emitted[0].description == "No face detected"

    def test_reentry_after_normal(self):
        """Test no_face x3, face x1, no_face x2 reports two violations"""
        debouncer = ViolationDebouncer()

        emitted = feed(debouncer, [NO_FACE] * 3 + [NORMAL] + [NO_FACE] * 2)

        assert [v.kind for v in emitted] == [ViolationKind.NO_FACE, ViolationKind.NO_FACE]

    def test_gaze_sequence(self):
        """Test none, left, left, none, right reports two looking_away"""
        debouncer = ViolationDebouncer()

        emitted = feed(debouncer, [NORMAL, looking("left"), looking("left"), NORMAL, looking("right")])

        assert [v.description for v in emitted] == ["Looking left", "Looking right"]

    def test_direction_switch_is_new_violation(self):
        """Test switching left to right without a normal sample still reports"""
        debouncer = ViolationDebouncer()

        emitted = feed(debouncer, [looking("left"), looking("right")])

        assert len(emitted) == 2

    def test_kind_switch_is_new_violation(self):
        """Test switching between kinds reports each entry"""
        debouncer = ViolationDebouncer()

        emitted = feed(debouncer, [NO_FACE, MULTIPLE, MULTIPLE, NO_FACE])

        assert [v.kind for v in emitted] == [
            ViolationKind.NO_FACE,
            ViolationKind.MULTIPLE_FACES,
            ViolationKind.NO_FACE,
        ]

    def test_reset(self):
        """Test reset clears the active condition"""
        debouncer = ViolationDebouncer()
        debouncer.update(NO_FACE)
        assert debouncer.active is not None

        debouncer.reset()

        assert debouncer.active is None
        assert debouncer.update(NO_FACE) is not None
