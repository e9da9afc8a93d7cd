"""Domain errors for the session engine.

Every error is terminal: it is reported to the caller verbatim and never
retried server-side. The HTTP layer renders them as
``{"error": <message>, "code": <code>}`` with ``status_code``.
"""


class SwipeMatchError(Exception):
    """Base exception for session engine errors."""
    status_code = 400
    code = 'error'
    default_message = 'Request failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class InvalidRequest(SwipeMatchError):
    code = 'invalid_request'
    default_message = 'Invalid request'


class SessionNotFound(SwipeMatchError):
    status_code = 404
    code = 'session_not_found'
    default_message = 'Session not found'


class InvalidTransition(SwipeMatchError):
    status_code = 409
    code = 'invalid_transition'
    default_message = 'Transition not allowed in the current session state'


class NotAcceptingSwipes(SwipeMatchError):
    status_code = 409
    code = 'not_accepting_swipes'
    default_message = 'Session is not accepting swipes'


class StaleRound(SwipeMatchError):
    status_code = 409
    code = 'stale_round'
    default_message = 'Swipe is for a round that is not current'


class UnknownCandidate(SwipeMatchError):
    code = 'unknown_candidate'
    default_message = 'Candidate is not in the current deck'


class AlreadyVoted(SwipeMatchError):
    status_code = 409
    code = 'already_voted'
    default_message = 'Final vote already cast'


class NotEnoughParticipants(SwipeMatchError):
    code = 'not_enough_participants'
    default_message = 'Not enough participants'


class Unauthorized(SwipeMatchError):
    status_code = 403
    code = 'unauthorized'
    default_message = 'Not allowed'


class SessionFull(SwipeMatchError):
    status_code = 409
    code = 'session_full'
    default_message = 'Session is full'


class SuperlikeLimitReached(SwipeMatchError):
    code = 'superlike_limit_reached'
    default_message = 'No superlikes left this round'
