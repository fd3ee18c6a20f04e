"""Pure usage statistics computed from the local event history."""

from math import floor
from typing import Dict, Iterable, List

from .models import AnalyticsEvent, FeedbackEvent


def compute_usage_summary(events: Iterable[AnalyticsEvent], top_n: int = 5) -> Dict:
    """Summarize recent fact checks: volume, text sizes, domains and models."""
    events_list = list(events)
    if not events_list:
        return empty_usage_summary()

    total_checks = len(events_list)
    text_lengths = [event.text_length for event in events_list]
    avg_text_length = sum(text_lengths) / total_checks

    domain_counts = _count_labels(event.domain for event in events_list)
    top_domains = sorted(domain_counts.items(), key=lambda item: (-item[1], item[0]))[:top_n]

    by_model: Dict[str, Dict] = {}
    for event in events_list:
        model = event.model or "unknown"
        if model not in by_model:
            by_model[model] = {"count": 0, "search_used": 0, "rated": 0, "total_rating": 0}
        by_model[model]["count"] += 1
        if event.search_used:
            by_model[model]["search_used"] += 1
        if event.rating is not None:
            by_model[model]["rated"] += 1
            by_model[model]["total_rating"] += event.rating

    for model in by_model:
        model_data = by_model[model]
        rated = model_data["rated"]
        model_data["avg_rating"] = model_data["total_rating"] / rated if rated > 0 else None
        model_data["search_rate"] = model_data["search_used"] / model_data["count"]

    return {
        "total_checks": total_checks,
        "avg_text_length": round(avg_text_length),
        "text_length_percentiles": _compute_percentiles(text_lengths),
        "top_domains": [{"domain": domain, "count": count} for domain, count in top_domains],
        "credible_source_rate": sum(1 for event in events_list if event.is_credible_source) / total_checks,
        "fact_check_source_rate": sum(1 for event in events_list if event.is_fact_check_source) / total_checks,
        "by_model": by_model,
    }


def compute_feedback_summary(events: Iterable[FeedbackEvent]) -> Dict:
    """Count positive/negative ratings and derive a satisfaction percentage."""
    events_list = list(events)
    if not events_list:
        return empty_feedback_summary()

    positive = sum(1 for event in events_list if event.rating == "positive")
    negative = sum(1 for event in events_list if event.rating == "negative")
    total = positive + negative

    return {
        "total": total,
        "positive": positive,
        "negative": negative,
        "satisfaction_rate": round(positive / total * 100) if total > 0 else 0,
    }


def empty_usage_summary() -> Dict:
    """Return empty usage summary structure."""
    return {
        "total_checks": 0,
        "avg_text_length": 0,
        "text_length_percentiles": _empty_percentiles(),
        "top_domains": [],
        "credible_source_rate": 0.0,
        "fact_check_source_rate": 0.0,
        "by_model": {},
    }


def empty_feedback_summary() -> Dict:
    """Return empty feedback summary structure."""
    return {"total": 0, "positive": 0, "negative": 0, "satisfaction_rate": 0}


def _compute_percentiles(values: Iterable[float]) -> Dict[str, float]:
    points = [50, 90, 95, 99]
    sorted_values = sorted(float(value) for value in values)
    if not sorted_values:
        return _empty_percentiles()

    return {f"p{point}": _percentile(sorted_values, point / 100) for point in points}


def _percentile(sorted_values: List[float], quantile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]

    position = quantile * (len(sorted_values) - 1)
    lower_index = floor(position)
    upper_index = min(lower_index + 1, len(sorted_values) - 1)
    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    weight = position - lower_index
    return lower_value + (upper_value - lower_value) * weight


def _empty_percentiles() -> Dict[str, float]:
    return {"p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}


def _count_labels(values: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for value in values:
        key = value if value else "unknown"
        counts[key] = counts.get(key, 0) + 1
    return counts
