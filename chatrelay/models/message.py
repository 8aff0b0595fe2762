# chatrelay/models/message.py
from pydantic import BaseModel, ConfigDict, Field

class Message(BaseModel):
    """
    A single chat message as exchanged between clients.

    Field aliases are the wire names used by the codec. The model is frozen:
    a message is built by the sender right before transmission and never
    changes afterwards.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: str = Field(default="", alias="messageContent")
    sender_username: str = Field(default="", alias="senderUsername")
    sender_flag: bool = Field(default=False, alias="messageSender")
    room_origin: str = Field(default="", alias="roomOriginName")
