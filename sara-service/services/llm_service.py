import logging
from typing import Any, Dict, Tuple
from langchain_core.messages import HumanMessage, SystemMessage
from config import settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion service fails or returns nothing usable."""


def create_llm() -> Tuple[Any, Dict[str, Any]]:
    """
    Factory function to create LLM instance based on provider setting.
    Supports OpenAI, Google Gemini, Hugging Face and any local
    OpenAI-compatible server.
    """
    provider = settings.llm_provider.lower()

    logger.info("🤖 Initializing LLM Provider: %s", provider)

    if provider == "openai":
        return create_openai_llm()
    elif provider == "gemini":
        return create_gemini_llm()
    elif provider == "local":
        return create_local_llm()
    elif provider == "huggingface":
        return create_huggingface_llm()
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}. Use 'openai', 'gemini', 'local', or 'huggingface'")


def create_openai_llm():
    """Create OpenAI LLM instance"""
    try:
        from langchain_openai import ChatOpenAI
    except ImportError:
        raise ImportError("langchain-openai not installed. Run: pip install langchain-openai")

    if not settings.openai_api_key:
        raise ValueError("OPENAI_API_KEY is required when using OpenAI provider")

    llm = ChatOpenAI(
        model=settings.openai_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        openai_api_key=settings.openai_api_key,
        max_retries=0,
        timeout=settings.llm_timeout
    )

    logger.info("✅ OpenAI LLM initialized: %s", settings.openai_model)
    return llm, {
        "provider": "openai",
        "model": settings.openai_model
    }


def create_gemini_llm():
    """Create Google Gemini LLM instance using the google-genai SDK"""
    try:
        from google import genai
    except ImportError:
        raise ImportError("google-genai not installed. Run: pip install google-genai")

    if not settings.google_api_key:
        raise ValueError("GOOGLE_API_KEY is required when using Gemini provider")

    # Wrapper exposing the same .invoke(messages) call as the LangChain models
    class GeminiNativeLLM:
        def __init__(self, api_key: str, model_name: str):
            self.client = genai.Client(api_key=api_key)
            self.model_name = model_name

        def invoke(self, messages):
            system_instruction = None
            contents = []

            for msg in messages:
                content = getattr(msg, 'content', str(msg))
                msg_type = getattr(msg, 'type', 'human')

                if msg_type == 'system':
                    system_instruction = content
                else:
                    contents.append(content)

            response = self.client.models.generate_content(
                model=self.model_name,
                contents=contents,
                config={
                    'system_instruction': system_instruction,
                    'temperature': settings.llm_temperature,
                    'max_output_tokens': settings.llm_max_tokens
                }
            )
            return response.text

    llm = GeminiNativeLLM(settings.google_api_key, settings.gemini_model)

    logger.info("✅ Google Gemini (Native SDK) initialized: %s", settings.gemini_model)
    return llm, {
        "provider": "gemini",
        "model": settings.gemini_model,
        "sdk": "google-genai"
    }


def create_local_llm():
    """Create Local LLM instance via an OpenAI-compatible server (e.g. LM Studio)"""
    try:
        from langchain_openai import ChatOpenAI
    except ImportError:
        raise ImportError("langchain-openai not installed. Run: pip install langchain-openai")

    llm = ChatOpenAI(
        base_url=settings.local_llm_base_url,
        model=settings.local_llm_model,
        api_key="not-needed",  # LM Studio doesn't require API key
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        max_retries=0,
        timeout=settings.llm_timeout
    )

    logger.info("✅ Local LLM initialized: %s (%s)", settings.local_llm_model, settings.local_llm_base_url)
    return llm, {
        "provider": "local",
        "model": settings.local_llm_model
    }


def create_huggingface_llm():
    """Create Hugging Face LLM instance via Inference API"""
    try:
        from huggingface_hub import InferenceClient
    except ImportError:
        raise ImportError("huggingface_hub not installed. Run: pip install huggingface_hub")

    if not settings.huggingface_api_key:
        raise ValueError("HUGGINGFACE_API_KEY is required when using HuggingFace provider")

    class HuggingFaceNativeLLM:
        def __init__(self, api_key: str, model_name: str):
            self.client = InferenceClient(model=model_name, token=api_key, timeout=settings.llm_timeout)

        def invoke(self, messages):
            roles = {'system': 'system', 'human': 'user', 'ai': 'assistant'}
            hf_messages = [
                {
                    "role": roles.get(getattr(msg, 'type', 'human'), 'user'),
                    "content": getattr(msg, 'content', str(msg))
                }
                for msg in messages
            ]

            # Returned as-is; extract_completion_text reads the choices array
            return self.client.chat_completion(
                messages=hf_messages,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature
            )

    llm = HuggingFaceNativeLLM(settings.huggingface_api_key, settings.huggingface_model)

    logger.info("✅ Hugging Face (Native Client) initialized: %s", settings.huggingface_model)
    return llm, {
        "provider": "huggingface",
        "model": settings.huggingface_model,
        "sdk": "huggingface_hub"
    }


def _text_from_blocks(blocks: list) -> str:
    content = ""
    for block in blocks:
        if isinstance(block, dict) and "text" in block:
            content += str(block["text"])
        elif isinstance(block, str):
            content += block
    return content


def _first_choice_text(choices: Any) -> str:
    if not choices:
        return ""
    choice = choices[0]
    if isinstance(choice, dict):
        message = choice.get("message") or {}
        return (message.get("content") if isinstance(message, dict) else None) or choice.get("text") or ""
    message = getattr(choice, "message", None)
    content = getattr(message, "content", None) if message is not None else None
    return content or getattr(choice, "text", None) or ""


def extract_completion_text(response: Any) -> str:
    """
    Normalize the response shapes completion clients return into plain text.

    Handles plain strings, message objects whose ``content`` is a string or a
    list of content blocks, dicts with a ``text`` field, and dicts or objects
    carrying a ``choices`` array.
    """
    if response is None:
        return ""
    if isinstance(response, str):
        return response
    if isinstance(response, list):
        return _text_from_blocks(response)
    if isinstance(response, dict):
        if "choices" in response:
            return _first_choice_text(response["choices"]) or ""
        if "text" in response:
            return str(response["text"] or "")
        if "content" in response:
            return extract_completion_text(response["content"])
        return ""

    content = getattr(response, "content", None)
    if content is not None:
        return extract_completion_text(content)
    choices = getattr(response, "choices", None)
    if choices is not None:
        return _first_choice_text(choices) or ""
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text
    return ""


def complete(llm: Any, system_prompt: str, user_prompt: str) -> str:
    """
    Run one completion and return its stripped text.

    Raises:
        CompletionError: if the call fails or the output is empty.
    """
    messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
    try:
        response = llm.invoke(messages)
    except Exception as e:
        raise CompletionError(f"Completion service call failed: {e}") from e

    text = extract_completion_text(response).strip()
    if not text:
        raise CompletionError("Completion service returned an empty response")
    return text
