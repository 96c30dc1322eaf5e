"""Instruction 模型 -- 设备端代理可直接执行的扁平指令

以 kind 为判别字段的标签联合，只携带原始类型字段。
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import DevicePackage, GroupAction


class _InstructionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="来源任务 ID")
    package: DevicePackage = Field(default=DevicePackage.NORMAL, description="设备包类型")


class ChatInstruction(_InstructionBase):
    kind: Literal["chat"] = "chat"
    number: str
    text: str
    action: GroupAction = GroupAction.SEND


class MediaInstruction(_InstructionBase):
    kind: Literal["media"] = "media"
    number: str
    url: str
    media_type: str
    text: str = ""


class GroupInstruction(_InstructionBase):
    kind: Literal["group"] = "group"
    action: GroupAction
    link: str | None = None
    group_id: str | None = None
    text: str = ""


class GroupMessageInstruction(_InstructionBase):
    kind: Literal["group_message"] = "group_message"
    group_id: str
    text: str


class BulkInstruction(_InstructionBase):
    kind: Literal["bulk"] = "bulk"
    numbers: list[str]
    text: str
    delay: int = Field(description="发送间隔（毫秒）")


Instruction = Annotated[
    ChatInstruction
    | MediaInstruction
    | GroupInstruction
    | GroupMessageInstruction
    | BulkInstruction,
    Field(discriminator="kind"),
]
