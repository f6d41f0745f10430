EXPLAIN_FUNCTION_SYSTEM_PROMPT = "You are a helpful code explanation expert. Explain code clearly and concisely in 2-3 sentences."

EXPLAIN_USAGE_SYSTEM_PROMPT = "You are a code analysis expert. Explain where and why functions are used."


def explain_function_prompt(function_name: str, code: str, context: str | None = None) -> str:
    return f"Explain what this function does:\n\n{code}\n\nFunction name: {function_name}\nContext: {context or 'N/A'}"


def explain_usage_prompt(function_name: str, usage_context: str, code_snippets: str | None = None) -> str:
    return (
        f"Analyze WHERE and WHY this function is used:\n\n"
        f"Function: {function_name}\n\n"
        f"Usage Context:\n{usage_context}\n\n"
        f"Code Snippets:\n{code_snippets or 'No snippets provided'}\n\n"
        "Explain the purpose and context of usage."
    )
