"""Minimal console demonstration of the streaming chat client."""

from chat_core.api.service import ensure_authenticated, get_default_client

if __name__ == "__main__":
    ensure_authenticated()
    question = "请用一句话介绍你自己"
    print("User:", question)
    shown = ""
    with get_default_client().send_message(question) as stream:
        for fragment in stream:
            # 每个片段是完整快照，只打印新增部分
            print(fragment.message[len(shown):], end="", flush=True)
            shown = fragment.message
    print()
