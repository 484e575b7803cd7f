"""Token pricing and cost reporting."""

from dataclasses import dataclass

# USD per million tokens: (input, output)
PRICING: dict[str, tuple[float, float]] = {
    # Anthropic Claude models
    "claude-3-5-sonnet-20241022": (3.00, 15.00),
    "claude-3-5-sonnet-20240620": (3.00, 15.00),
    "claude-3-5-haiku-20241022": (0.25, 1.25),
    "claude-3-opus-20240229": (15.00, 75.00),
    "claude-3-sonnet-20240229": (3.00, 15.00),
    "claude-3-haiku-20240307": (0.25, 1.25),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-opus-4-20250514": (15.00, 75.00),
    # OpenAI models
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-2024-11-20": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o-mini-2024-07-18": (0.15, 0.60),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-4-turbo-2024-04-09": (10.00, 30.00),
    "gpt-4": (30.00, 60.00),
    "gpt-3.5-turbo": (0.50, 1.50),
    "gpt-3.5-turbo-0125": (0.50, 1.50),
    "o1-preview": (15.00, 60.00),
    "o1-preview-2024-09-12": (15.00, 60.00),
    "o1-mini": (3.00, 12.00),
    "o1-mini-2024-09-12": (3.00, 12.00),
    # Google Gemini models
    "gemini-1.5-pro": (1.25, 5.00),
    "gemini-1.5-pro-002": (1.25, 5.00),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-1.5-flash-002": (0.075, 0.30),
    "gemini-1.5-flash-8b": (0.0375, 0.15),
    "gemini-1.0-pro": (0.50, 1.50),
    "gemini-2.0-flash-exp": (0.075, 0.30),
    # xAI Grok models
    "grok-beta": (5.00, 15.00),
    "grok-2-1212": (2.00, 10.00),
    "grok-2-vision-1212": (2.00, 10.00),
    # Cohere models
    "command-r-plus": (2.50, 10.00),
    "command-r": (0.15, 0.60),
    "command": (1.00, 2.00),
    "command-light": (0.30, 0.60),
    # Meta models
    "llama-3.2-1b": (0.10, 0.10),
    "llama-3.2-3b": (0.10, 0.10),
    "llama-3.2-11b": (0.35, 0.40),
    "llama-3.2-90b": (1.20, 1.20),
    "llama-3.1-8b": (0.18, 0.18),
    "llama-3.1-70b": (0.99, 0.99),
    "llama-3.1-405b": (5.32, 16.00),
}

MODEL_ALIASES: dict[str, str] = {
    "claude-3-5-sonnet": "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku": "claude-3-5-haiku-20241022",
    "claude-3-opus": "claude-3-opus-20240229",
    "claude-3-sonnet": "claude-3-sonnet-20240229",
    "claude-3-haiku": "claude-3-haiku-20240307",
    "claude-sonnet-4": "claude-sonnet-4-20250514",
    "claude-opus-4": "claude-opus-4-20250514",
    "gpt-3.5": "gpt-3.5-turbo",
    "gemini-pro": "gemini-1.5-pro",
    "gemini-flash": "gemini-1.5-flash",
    "grok": "grok-beta",
}

# Prompt-cache multipliers relative to the input rate.
CACHE_WRITE_MULTIPLIER = 1.25
CACHE_READ_MULTIPLIER = 0.1

Pricing = dict[str, tuple[float, float]]


@dataclass(frozen=True)
class CostBreakdown:
    """Cost of a number of input and output tokens for one model."""

    model: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    formatted_cost: str
    detailed_cost: str
    known: bool = True
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_cost: float = 0.0


def resolve_model_alias(model: str, aliases: dict[str, str] | None = None) -> str:
    return (MODEL_ALIASES if aliases is None else aliases).get(model, model)


def get_model_pricing(
    model: str, pricing: Pricing | None = None, aliases: dict[str, str] | None = None
) -> tuple[float, float] | None:
    """Input and output price per million tokens, or None for unknown models."""
    return (PRICING if pricing is None else pricing).get(resolve_model_alias(model, aliases))


def is_model_supported(model: str, pricing: Pricing | None = None, aliases: dict[str, str] | None = None) -> bool:
    return get_model_pricing(model, pricing, aliases) is not None


def format_cost(cost: float) -> str:
    """Format a dollar amount, switching to smaller units for tiny amounts."""
    if cost == 0:
        return "$0.0000"
    if cost < 0.0001:
        return f"${cost * 1_000_000:.2f}µ"
    if cost < 0.001:
        return f"${cost * 1000:.3f}m"
    if cost < 0.01:
        return f"${cost * 100:.2f}¢"
    if cost < 1:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def format_token_count(tokens: int) -> str:
    if tokens < 1000:
        return f"{tokens} tokens"
    if tokens < 1_000_000:
        return f"{tokens / 1000:.1f}K tokens"
    return f"{tokens / 1_000_000:.2f}M tokens"


class CostReporter:
    """Computes spend from token counts with a static price table.

    Unknown models yield a zero cost with an explanatory message; cost display
    is best-effort and never raises.
    """

    def __init__(self, pricing: Pricing | None = None, aliases: dict[str, str] | None = None):
        self.pricing = PRICING if pricing is None else pricing
        self.aliases = MODEL_ALIASES if aliases is None else aliases

    def resolve(self, model: str) -> str:
        return resolve_model_alias(model, self.aliases)

    def is_supported(self, model: str) -> bool:
        return is_model_supported(model, self.pricing, self.aliases)

    def supported_models(self) -> list[str]:
        return list(self.pricing)

    def calculate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cache_creation_input_tokens: int = 0,
        cache_read_input_tokens: int = 0,
    ) -> CostBreakdown:
        resolved = self.resolve(model)
        rates = get_model_pricing(model, self.pricing, self.aliases)
        if rates is None:
            examples = ", ".join(self.supported_models()[:5])
            return CostBreakdown(
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                input_cost=0.0,
                output_cost=0.0,
                total_cost=0.0,
                formatted_cost=f"Unknown model: {model}",
                detailed_cost=f"Model '{model}' pricing not available.\nSupported models: {examples}...",
                known=False,
                cache_creation_input_tokens=cache_creation_input_tokens,
                cache_read_input_tokens=cache_read_input_tokens,
            )

        input_rate, output_rate = rates
        input_cost = input_tokens / 1_000_000 * input_rate
        output_cost = output_tokens / 1_000_000 * output_rate
        cache_cost = (
            cache_creation_input_tokens * CACHE_WRITE_MULTIPLIER + cache_read_input_tokens * CACHE_READ_MULTIPLIER
        ) / 1_000_000 * input_rate
        total_cost = input_cost + output_cost + cache_cost

        lines = [
            f"Model: {resolved}",
            f"Input: {format_token_count(input_tokens)} × ${input_rate}/M = {format_cost(input_cost)}",
            f"Output: {format_token_count(output_tokens)} × ${output_rate}/M = {format_cost(output_cost)}",
        ]
        if cache_creation_input_tokens or cache_read_input_tokens:
            lines.append(
                f"Cache: {format_token_count(cache_creation_input_tokens)} written, "
                f"{format_token_count(cache_read_input_tokens)} read = {format_cost(cache_cost)}"
            )
        lines.append(f"Total Cost: {format_cost(total_cost)}")

        return CostBreakdown(
            model=resolved,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            total_cost=total_cost,
            formatted_cost=format_cost(total_cost),
            detailed_cost="\n".join(lines),
            cache_creation_input_tokens=cache_creation_input_tokens,
            cache_read_input_tokens=cache_read_input_tokens,
            cache_cost=cache_cost,
        )
