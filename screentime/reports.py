"""Usage report generation and export.

Builds per-day usage reports over arbitrary date ranges from the ledger
and exports them to Markdown or JSON.

Example:
    >>> generator = UsageReportGenerator(engine.ledger.snapshot)
    >>> report = generator.generate("last week")
    >>> print(report.total_minutes)
    >>> path = ReportExporter(Path("/tmp/reports")).export(report, format="markdown")
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from .clock import date_key
from .timeparser import TimeParser
from .views import round_minutes

if TYPE_CHECKING:
    from .ledger import UsageRecord

logger = logging.getLogger(__name__)

# Longest range a report will zero-fill, about ten years
MAX_REPORT_DAYS = 3660


@dataclass
class DayUsage:
    """Usage for a single day of a report."""
    date: str
    minutes: float
    sessions: int


@dataclass
class UsageReport:
    """Usage over a date range.

    Attributes:
        title: Report title.
        time_range: Human-readable range description.
        generated_at: When the report was generated.
        days: One DayUsage per calendar day in the range, oldest first.
        total_minutes: Sum of minutes over the range.
        total_sessions: Sum of sessions over the range.
        average_minutes: Mean minutes per day in the range.
        busiest_day: Date key with the most minutes, None if no usage.
    """
    title: str
    time_range: str
    generated_at: datetime
    days: List[DayUsage] = field(default_factory=list)
    total_minutes: float = 0.0
    total_sessions: int = 0
    average_minutes: float = 0.0
    busiest_day: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "time_range": self.time_range,
            "generated_at": self.generated_at.isoformat(),
            "days": [
                {"date": d.date, "minutes": d.minutes, "sessions": d.sessions}
                for d in self.days
            ],
            "total_minutes": self.total_minutes,
            "total_sessions": self.total_sessions,
            "average_minutes": self.average_minutes,
            "busiest_day": self.busiest_day,
        }


class UsageReportGenerator:
    """Generate usage reports for date ranges.

    Attributes:
        records_provider: Returns the current ledger snapshot.
        time_parser: Parser for range expressions.
    """

    def __init__(
        self,
        records_provider: Callable[[], Dict[str, "UsageRecord"]],
        reference: Optional[date] = None,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        self.records_provider = records_provider
        self.time_parser = TimeParser(reference)
        self.now_fn = now_fn

    def generate(self, time_range: str) -> UsageReport:
        """Build a report for a natural language range.

        Raises:
            ValueError: If time_range cannot be parsed or spans more than
                MAX_REPORT_DAYS days.
        """
        start, end = self.time_parser.parse(time_range)
        span = (end - start).days + 1
        if span > MAX_REPORT_DAYS:
            raise ValueError(f"Range covers {span} days, at most {MAX_REPORT_DAYS} are allowed")
        description = self.time_parser.describe_range(start, end)
        logger.info(f"Generating usage report for {description}")

        records = self.records_provider()
        days = []
        for offset in range(span):
            key = date_key(start + timedelta(days=offset))
            record = records.get(key)
            days.append(DayUsage(
                date=key,
                minutes=round_minutes(record.screen_time_minutes) if record else 0.0,
                sessions=record.session_count if record else 0,
            ))

        total = sum(d.minutes for d in days)
        busiest = max(days, key=lambda d: d.minutes)
        return UsageReport(
            title=f"Screen Time: {description}",
            time_range=description,
            generated_at=self.now_fn(),
            days=days,
            total_minutes=round_minutes(total),
            total_sessions=sum(d.sessions for d in days),
            average_minutes=round_minutes(total / len(days)),
            busiest_day=busiest.date if busiest.minutes > 0 else None,
        )


def format_minutes(minutes: float) -> str:
    hours, mins = divmod(int(round(minutes)), 60)
    return f"{hours}h {mins}m" if hours else f"{mins}m"


class ReportExporter:
    """Write reports to files.

    Attributes:
        output_dir: Directory where exported files are saved.
    """

    def __init__(self, output_dir: Path = None):
        """
        Args:
            output_dir: Directory for exported files. Defaults to
                ~/screentime-data/reports.
        """
        self.output_dir = Path(output_dir) if output_dir else Path.home() / 'screentime-data' / 'reports'
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export(self, report: UsageReport, format: str = 'markdown') -> Path:
        """Export a report.

        Args:
            report: Report to export.
            format: 'markdown' or 'json'.

        Returns:
            Path to the exported file.

        Raises:
            ValueError: If format is not supported.
        """
        timestamp = report.generated_at.strftime('%Y%m%d_%H%M%S')
        safe_title = report.title.replace(' ', '_').replace(':', '').replace(',', '')[:50]

        if format == 'markdown':
            path = self.output_dir / f"{safe_title}_{timestamp}.md"
            path.write_text(self.to_markdown(report), encoding='utf-8')
        elif format == 'json':
            path = self.output_dir / f"{safe_title}_{timestamp}.json"
            path.write_text(json.dumps(report.to_dict(), indent=2), encoding='utf-8')
        else:
            raise ValueError(f"Unknown format: {format}")

        logger.info(f"Exported report to {path}")
        return path

    @staticmethod
    def to_markdown(report: UsageReport) -> str:
        lines = [
            f"# {report.title}",
            "",
            f"*Generated: {report.generated_at.strftime('%B %d, %Y at %I:%M %p')}*",
            "",
            "## Overview",
            "",
            f"- **Total Screen Time:** {format_minutes(report.total_minutes)}",
            f"- **Sessions:** {report.total_sessions}",
            f"- **Daily Average:** {format_minutes(report.average_minutes)}",
            f"- **Busiest Day:** {report.busiest_day or 'n/a'}",
            "",
            "## By Day",
            "",
            "| Date | Screen Time | Sessions |",
            "|------|-------------|----------|",
        ]
        for day in report.days:
            lines.append(f"| {day.date} | {format_minutes(day.minutes)} | {day.sessions} |")
        lines.append("")
        return "\n".join(lines)
