from citizen_chat.domain.enums import SenderRole
from citizen_chat.domain.models import Conversation, MessageDraft
from citizen_chat.infra.org.directory import OrgDirectory, QuestionAnswer

BOT_SENDER_ID = "bot"
BOT_SENDER_NAME = "Virtual assistant"


class ScriptedBot:
    """Static Q&A replies for conversations that have not reached a human yet."""

    def __init__(self, org: OrgDirectory, prompt_limit: int = 3) -> None:
        self.org = org
        self.prompt_limit = prompt_limit

    def questions(self, conversation: Conversation) -> list[QuestionAnswer]:
        return self.org.questions_for(conversation.department_id, conversation.service_id)

    def greeting(self, conversation: Conversation) -> MessageDraft:
        return self._draft(
            f"Hi {conversation.citizen.display_name}! I am the virtual assistant. "
            "Pick one of the common questions or ask to talk to an agent."
        )

    def reply(self, conversation: Conversation, text: str) -> MessageDraft:
        questions = self.questions(conversation)
        match = self.find_answer(questions, text)
        if match is not None:
            return self._draft(match.answer)

        prompt_list = ", ".join(
            question.question for question in questions[: self.prompt_limit]
        )
        if prompt_list:
            return self._draft(
                "I can help with common questions. "
                f"Try one of these: {prompt_list}."
            )
        return self._draft(
            "I can help with common questions. Ask to talk to an agent for anything else."
        )

    @staticmethod
    def find_answer(
        questions: list[QuestionAnswer], text: str
    ) -> QuestionAnswer | None:
        normalized = text.strip().casefold()
        if not normalized:
            return None
        for question in questions:
            if question.question.strip().casefold() == normalized:
                return question
        return None

    @staticmethod
    def _draft(content: str) -> MessageDraft:
        return MessageDraft(
            sender_id=BOT_SENDER_ID,
            sender_name=BOT_SENDER_NAME,
            sender_role=SenderRole.SYSTEM,
            content=content,
        )
