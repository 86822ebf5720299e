#!/usr/bin/env python3
"""
Score Report Pipeline - Example Usage
=====================================

This script runs the score extraction pipeline on a grade report, either
a PDF (full pipeline) or an existing transcription (text stages only).

Usage:
    python examples/score_report_example.py path/to/report.pdf
    python examples/score_report_example.py --text path/to/transcript.txt

Requirements:
    - AWS credentials configured (for Textract), or TRANSCRIPTION_BACKEND=vision
    - Optional: LLM_API_KEY environment variable (extraction fallback, commentary)
"""

import sys
import json
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from scorecard.services.score_pipeline import (
    DocumentRequest,
    ScoreReportPipeline,
    LAYOUT_VARIANTS,
    PRIMARY_VARIANT,
    build_profile,
)
from scorecard.services.score_pipeline.disambiguator import AUTO
from scorecard.utils.pdf_handler import PDFHandler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_pdf_pipeline() -> ScoreReportPipeline:
    """Pipeline with the configured storage, transcription and extraction services."""
    from scorecard.utils.rate_limiter import RateLimiter
    from scorecard.services.storage_service import create_storage
    from scorecard.services.transcription_service import create_transcriber
    from scorecard.services.extraction_service import SchemaExtractionService

    rate_limiter = RateLimiter()
    return ScoreReportPipeline(
        storage=create_storage(),
        transcriber=create_transcriber(rate_limiter),
        extractor=SchemaExtractionService(rate_limiter=rate_limiter),
    )


def process_file(path: str, layout: str = AUTO, is_text: bool = False,
                 output_path: str = None, commentary: bool = False):
    """
    Process a report through the pipeline.

    Args:
        path: Path to the PDF (or transcription when is_text is set)
        layout: Layout variant name or 'auto'
        is_text: Treat the file as an existing transcription
        output_path: Optional path to save JSON output
        commentary: Whether to generate commentary
    """
    path = Path(path)
    if not path.exists():
        logger.error(f"File not found: {path}")
        return None

    if is_text:
        pipeline = ScoreReportPipeline()
        output = pipeline.process_text(path.read_text(encoding='utf-8'), layout)
    else:
        pdf_bytes = path.read_bytes()
        if not PDFHandler.is_pdf(pdf_bytes):
            logger.error(f"Not a PDF: {path}")
            return None

        logger.info(f"Processing: {path.name} ({len(pdf_bytes):,} bytes)")
        pipeline = build_pdf_pipeline()
        handle = pipeline.storage.store(pdf_bytes, PDFHandler.storage_path(path.name))
        output = pipeline.process(DocumentRequest(handle=handle, layout_hint=layout, filename=path.name))

    stats = pipeline.get_statistics(output)

    # Print summary
    print("\n" + "=" * 60)
    print("SCORE REPORT RESULTS")
    print("=" * 60)
    print(f"\nOK: {output.ok}")
    if output.error:
        print(f"Error: {output.error}")
    print(f"Layout: {output.diagnostics.variant} ({output.diagnostics.variant_method})")
    print(f"Candidate Yields: {output.diagnostics.candidate_yields}")
    print(f"Extraction Path: {output.diagnostics.extraction_path}")
    print(f"Processing Time: {output.diagnostics.processing_time_ms}ms")

    print("\n" + "-" * 40)
    print("RECORDS")
    print("-" * 40)

    for record in output.records:
        two = record.totals.two_subject
        four = record.totals.four_subject
        print(f"  [{record.category.value:15}] {record.label or '-':20} {record.occurred_on or '-':10} "
              f"2科={two.raw_score} 4科={four.raw_score} "
              f"評価={two.grade_level if two.grade_level is not None else four.grade_level} "
              f"偏差値={four.percentile_deviation if four.percentile_deviation is not None else two.percentile_deviation}")
        for note in record.annotations:
            print(f"    └─ {note}")

    print("\n" + "-" * 40)
    print("TRENDS")
    print("-" * 40)
    for category, summary in output.trends.items():
        print(f"  {category.value}: {summary.verdict} ({summary.metric}: {summary.values})")

    if output.ok:
        profile = build_profile(output.records, has_single_documents=False)
        print(f"\nStudent Type: {profile.student_type}")
        for warning in profile.warnings:
            print(f"  ! {warning}")

        if commentary:
            from scorecard.services.commentary_service import CommentaryService

            result = CommentaryService().generate(output.records, output.trends, profile=profile.to_dict())
            print("\n" + "-" * 40)
            print(f"COMMENTARY ({result.source})")
            print("-" * 40)
            print(result.text)

    # Save output if path provided
    if output_path:
        output_data = output.to_dict()
        output_data['statistics'] = stats

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)

        logger.info(f"Output saved to: {output_path}")

    return output


def show_layouts():
    """Print the registered layout variants."""
    print("\n" + "=" * 60)
    print("LAYOUT VARIANTS")
    print("=" * 60)

    for variant in LAYOUT_VARIANTS:
        primary = " (primary)" if variant.name == PRIMARY_VARIANT else ""
        print(f"\n{variant.name}{primary}")
        print(f"  {variant.description}")
        for section in variant.sections:
            print(f"  • {section.category.value}")


def main():
    parser = argparse.ArgumentParser(
        description='Score Report Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Process a PDF and print results
    python score_report_example.py report.pdf

    # Run the text stages on an existing transcription
    python score_report_example.py --text transcript.txt --layout two_first

    # Save output and generate commentary
    python score_report_example.py report.pdf -o results.json --commentary

    # Show the layout variants
    python score_report_example.py --layouts
        """
    )

    parser.add_argument(
        'path',
        nargs='?',
        help='Path to the PDF (or transcription with --text)'
    )

    parser.add_argument(
        '--text',
        action='store_true',
        help='Treat the input as an existing transcription'
    )

    parser.add_argument(
        '--layout',
        default=AUTO,
        help="Layout variant name or 'auto'"
    )

    parser.add_argument(
        '-o', '--output',
        help='Path to save JSON output'
    )

    parser.add_argument(
        '--commentary',
        action='store_true',
        help='Generate commentary for the records'
    )

    parser.add_argument(
        '--layouts',
        action='store_true',
        help='Show the layout variants and exit'
    )

    args = parser.parse_args()

    if args.layouts:
        show_layouts()
        return

    if not args.path:
        parser.print_help()
        print("\nError: Please provide a file path or use --layouts")
        sys.exit(1)

    process_file(args.path, args.layout, args.text, args.output, args.commentary)


if __name__ == '__main__':
    main()
