# mentorship_matching/constants.py
class ErrorMessages:
    PROGRAM_NOT_FOUND = "Program not found"
    PROGRAM_CLOSED = "Program is archived and no longer accepts matching activity"
    MATCH_NOT_FOUND = "Match not found"
    MENTOR_NOT_FOUND = "Mentor registration not found"
    MENTEE_NOT_FOUND = "Mentee registration not found"
    NOT_MATCH_MENTOR = "Only the assigned mentor can respond to this match"
    NOT_MATCH_MENTEE = "Only the assigned mentee can respond to this match"
    ADMIN_REQUIRED = "Administrator privileges required"
    CAPACITY_EXCEEDED = "Mentor has reached maximum capacity"
    INVALID_STATUS = "Invalid status transition"
    STALE_MATCH = "Match was modified concurrently; refetch and retry"
    RUN_IN_PROGRESS = "A matching run or rematch is already in progress for this program"
    PREFERENCE_COUNT = "Exactly {count} preferred mentor IDs are required"
    PREFERENCE_DUPLICATE = "Cannot select the same mentor multiple times"
    PREFERENCE_INELIGIBLE = "All selected mentors must be approved for this program"
    REASON_TOO_SHORT = "Rejection reason must be at least {length} characters"
    MENTEE_ALREADY_MATCHED = "Mentee already has an active match in this program"

class BusinessRules:
    MIN_PASSWORD_LENGTH = 6
    MAX_USERNAME_LENGTH = 50
    AUTO_REJECT_REASON = "No response received within {days} days"
    MANUAL_REVIEW_EXHAUSTED = "All remaining preferences rejected or full"
