from slotwise.scheduling.calendar import CalendarBuilder
from slotwise.scheduling.conflict_resolver import ConflictResolver, Resolution
from slotwise.scheduling.slot_generator import SlotGenerator, generate_slots, merge_windows
from slotwise.scheduling.state_machine import BookingStateMachine, Transition

__all__ = [
    "SlotGenerator",
    "generate_slots",
    "merge_windows",
    "ConflictResolver",
    "Resolution",
    "BookingStateMachine",
    "Transition",
    "CalendarBuilder",
]
