"""
Telegram Bot API objects and tool input models.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ParseMode = Literal["Markdown", "MarkdownV2", "HTML"]


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    type: str = ""
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class TelegramDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    file_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    message_id: int
    date: int = 0
    chat: TelegramChat
    text: Optional[str] = None
    document: Optional[TelegramDocument] = None


class SendMessageInput(BaseModel):
    """telegram.send_message arguments"""
    chat_id: Union[int, str]
    text: str = Field(min_length=1)
    parse_mode: ParseMode = "HTML"
    disable_web_page_preview: bool = True
    disable_notification: bool = False


class SendDocumentInput(BaseModel):
    """telegram.send_document arguments"""
    chat_id: Union[int, str]
    file: str = Field(description="https URL or base64 data URI")
    filename: str = "document.pdf"
    caption: Optional[str] = None


class GetUpdatesInput(BaseModel):
    """telegram.get_updates arguments"""
    offset: Optional[int] = None
    timeout: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=100)


class GetChatInput(BaseModel):
    """telegram.get_chat arguments"""
    chat_id_or_username: str = Field(min_length=1)


class EmptyInput(BaseModel):
    pass


class SearchInput(BaseModel):
    query: str = Field(min_length=1)


class FetchInput(BaseModel):
    id: str = Field(min_length=1)


class ToolInfo(BaseModel):
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    model_config = {"populate_by_name": True}
