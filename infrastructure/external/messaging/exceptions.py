class MessagingError(Exception):
    pass


class SerializationError(MessagingError):
    """Payload could not be encoded; retrying will not help."""


class PublishError(MessagingError):
    """The broker did not acknowledge the message. The outbox row stays unpublished."""


class DeliveryTimeout(PublishError):
    pass


class PublisherClosed(PublishError):
    pass
