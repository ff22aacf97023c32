class QuizError(Exception):
    status_code = 400
    code = 'error'
    retryable = False

    def __init__(self, message, entity=None, action=None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.action = action

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.entity is not None:
            payload['entity'] = self.entity
        if self.action is not None:
            payload['action'] = self.action
        if self.retryable:
            payload['retryable'] = True
        return payload


class ValidationError(QuizError):
    status_code = 400
    code = 'validation_error'


class NotFoundError(QuizError):
    status_code = 404
    code = 'not_found'


class ForbiddenError(QuizError):
    status_code = 403
    code = 'forbidden'


class LockedError(QuizError):
    status_code = 423
    code = 'locked'


class PreconditionError(QuizError):
    status_code = 409
    code = 'precondition_failed'


class ConflictError(QuizError):
    """Lost a race against a concurrent writer; safe to retry once with fresh state."""
    status_code = 409
    code = 'conflict'
    retryable = True
