"""
Weather analytics over daily reports.

Pure functions over DailyReport rows (or anything with the same weather
attributes). Thresholds are imperial: °F, mph, inches.

    analyze_weather_patterns(reports)   → totals, condition breakdown,
                                          productivity impact, extreme days
    weather_impact_severity(report)     → {severity, reasons}
    monthly_summary(reports)            → [{month: "YYYY-MM", analytics}]
"""

from collections import defaultdict

from app.models.daily_report import WEATHER_CONDITIONS

EXTREME_HEAT_F = 95
FREEZING_F = 32
HIGH_WIND_MPH = 25
HEAVY_RAIN_IN = 0.5

# A day is unworkable past any of these
UNWORKABLE_HEAT_F = 105
UNWORKABLE_COLD_F = 15
UNWORKABLE_WIND_MPH = 35

SEVERITY_ORDER = ("none", "low", "medium", "high", "critical")


def _val(report, attr):
    return getattr(report, attr, None) or 0


def _crew(report):
    count = getattr(report, "total_crew_count", None)
    return count or 0


def _avg(values):
    values = list(values)
    return sum(values) / len(values) if values else 0


def is_workable_day(report):
    if _val(report, "precipitation") > HEAVY_RAIN_IN:
        return False
    if _val(report, "temperature_high") > UNWORKABLE_HEAT_F:
        return False
    low = getattr(report, "temperature_low", None)
    if low is not None and low < UNWORKABLE_COLD_F:
        return False
    return _val(report, "wind_speed") <= UNWORKABLE_WIND_MPH


def empty_analytics():
    return {
        "total_days": 0,
        "workable_days": 0,
        "impacted_days": 0,
        "workable_days_percentage": 0,
        "condition_breakdown": {c: 0 for c in (*WEATHER_CONDITIONS, "unknown")},
        "average_temperature_high": 0,
        "average_temperature_low": 0,
        "total_precipitation": 0,
        "days_with_precipitation": 0,
        "average_crew_on_clear_days": 0,
        "average_crew_on_rainy_days": 0,
        "productivity_impact_percentage": 0,
        "extreme_heat_days": 0,
        "extreme_cold_days": 0,
        "high_wind_days": 0,
        "heavy_rain_days": 0,
    }


def analyze_weather_patterns(reports):
    reports = list(reports)
    if not reports:
        return empty_analytics()

    result = empty_analytics()
    total = len(reports)
    breakdown = result["condition_breakdown"]
    for r in reports:
        condition = getattr(r, "weather_condition", None)
        breakdown[condition if condition in breakdown else "unknown"] += 1

    with_temp = [r for r in reports
                 if r.temperature_high is not None and r.temperature_low is not None]
    workable = sum(1 for r in reports if is_workable_day(r))

    clear = [_crew(r) for r in reports if r.weather_condition in ("clear", "partly_cloudy")]
    wet = [_crew(r) for r in reports if r.weather_condition in ("rain", "snow")]
    avg_clear, avg_wet = _avg(clear), _avg(wet)
    impact = (avg_clear - avg_wet) / avg_clear * 100 if avg_clear else 0

    result.update({
        "total_days": total,
        "workable_days": workable,
        "impacted_days": total - workable,
        "workable_days_percentage": round(workable / total * 100, 2),
        "average_temperature_high": round(_avg(r.temperature_high for r in with_temp), 1),
        "average_temperature_low": round(_avg(r.temperature_low for r in with_temp), 1),
        "total_precipitation": round(sum(_val(r, "precipitation") for r in reports), 2),
        "days_with_precipitation": sum(1 for r in reports if _val(r, "precipitation") > 0),
        "average_crew_on_clear_days": round(avg_clear, 1),
        "average_crew_on_rainy_days": round(avg_wet, 1),
        "productivity_impact_percentage": round(max(0, impact), 1),
        "extreme_heat_days": sum(1 for r in reports if _val(r, "temperature_high") > EXTREME_HEAT_F),
        "extreme_cold_days": sum(1 for r in reports
                                 if r.temperature_low is not None
                                 and r.temperature_low < FREEZING_F),
        "high_wind_days": sum(1 for r in reports if _val(r, "wind_speed") > HIGH_WIND_MPH),
        "heavy_rain_days": sum(1 for r in reports if _val(r, "precipitation") > HEAVY_RAIN_IN),
    })
    return result


def _raise(current, level):
    return level if SEVERITY_ORDER.index(level) > SEVERITY_ORDER.index(current) else current


def weather_impact_severity(report):
    """Classify one day's weather; the worst factor wins."""
    reasons = []
    severity = "none"

    precip = _val(report, "precipitation")
    if precip > 1.0:
        reasons.append('Heavy precipitation (>1")')
        severity = _raise(severity, "critical")
    elif precip > HEAVY_RAIN_IN:
        reasons.append('Moderate precipitation (>0.5")')
        severity = _raise(severity, "high")
    elif precip > 0.1:
        reasons.append("Light precipitation")
        severity = _raise(severity, "low")

    high = report.temperature_high if report.temperature_high is not None else 70
    low = report.temperature_low if report.temperature_low is not None else 50
    if high > UNWORKABLE_HEAT_F:
        reasons.append("Extreme heat (>105°F)")
        severity = _raise(severity, "critical")
    elif high > EXTREME_HEAT_F:
        reasons.append("Very hot (>95°F)")
        severity = _raise(severity, "high")
    if low < UNWORKABLE_COLD_F:
        reasons.append("Extreme cold (<15°F)")
        severity = _raise(severity, "critical")
    elif low < FREEZING_F:
        reasons.append("Freezing temperatures")
        severity = _raise(severity, "medium")

    wind = _val(report, "wind_speed")
    if wind > UNWORKABLE_WIND_MPH:
        reasons.append("Dangerous winds (>35 mph)")
        severity = _raise(severity, "critical")
    elif wind > HIGH_WIND_MPH:
        reasons.append("High winds (>25 mph)")
        severity = _raise(severity, "high")
    elif wind > 15:
        reasons.append("Moderate winds")
        severity = _raise(severity, "low")

    return {"severity": severity, "reasons": reasons}


def monthly_summary(reports):
    by_month = defaultdict(list)
    for r in reports:
        by_month[r.report_date.strftime("%Y-%m")].append(r)
    return [{"month": month, "analytics": analyze_weather_patterns(items)}
            for month, items in sorted(by_month.items())]
