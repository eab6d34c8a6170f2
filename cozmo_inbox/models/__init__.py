from cozmo_inbox.models.customer import Customer  # noqa: F401
from cozmo_inbox.models.enums import Channel, CustomerStatus, MessageCategory  # noqa: F401
from cozmo_inbox.models.message import Attachment, Message  # noqa: F401
from cozmo_inbox.models.response_template import ResponseTemplate  # noqa: F401
