import enum


class Channel(enum.Enum):
    email = "email"
    whatsapp = "whatsapp"
    instagram = "instagram"
    facebook = "facebook"


class MessageCategory(enum.Enum):
    inquiry = "inquiry"
    complaint = "complaint"
    feedback = "feedback"
    support = "support"
    other = "other"


class CustomerStatus(enum.Enum):
    new = "new"
    returning = "returning"
    vip = "vip"
    active = "active"
