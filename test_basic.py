"""
Basic smoke tests: the packages import and the terminal renderer handles
every message shape.
"""

from rich.console import Console

from agent import (
    ChatMessage,
    FileChangeProposal,
    FileOperation,
    MessageStatus,
    PlanStep,
    Sender,
    ToolStatus,
    ToolUsage,
)


def _render(renderable) -> str:
    console = Console(width=100, record=True, color_system=None)
    console.print(renderable)
    return console.export_text()


def test_agent_imports():
    import agent
    assert callable(agent.ConversationOrchestrator)
    assert callable(agent.parse_response)


def test_provider_imports():
    import providers
    assert callable(providers.create_provider)
    assert issubclass(providers.BedrockError, providers.ProviderError)


def test_render_user_and_system_messages():
    from main import render_message
    assert "hello" in _render(render_message(ChatMessage(sender=Sender.USER, content="hello")))
    assert "Plan completed." in _render(render_message(ChatMessage(sender=Sender.SYSTEM, content="Plan completed.")))


def test_render_assistant_with_tools_and_changes():
    from main import render_message
    message = ChatMessage(
        sender=Sender.ASSISTANT,
        content="Done",
        tool_usages=(ToolUsage("readFile", status=ToolStatus.COMPLETED, file_path="a.py", duration_ms=12),),
        file_changes=(FileChangeProposal(FileOperation.CREATE, path="a.py", new_content="x",
                                         diff_patch="--- /dev/null\n+++ b/a.py\n@@ -0,0 +1 @@\n+x\n"),),
        plan_steps=(PlanStep("s1", "First step"),),
        status=MessageStatus.PENDING_REVIEW,
    )
    text = _render(render_message(message))
    assert "readFile" in text
    assert "create a.py" in text
    assert "First step" in text


def test_render_error_offers_retry():
    from main import render_message
    text = _render(render_message(ChatMessage(sender=Sender.ASSISTANT, content="Error: boom",
                                              status=MessageStatus.ERROR, retry_prompt="hi")))
    assert "Error: boom" in text
    assert "/retry" in text
