"""
Command-Line Interface for PhotoVibe Recs
=========================================

Usage:
    photovibe-recs <image> [options]
    photovibe-recs --analysis <analysis.json> [options]

Options:
    --analysis      Use a saved ImageAnalysis JSON instead of calling the vision model
    --no-curated    Disable the curated catalog source
    --no-search     Disable the Spotify search source
    --gpt           Enable AI song suggestions
    --catalog       Curated catalog JSON path
    --timeout       End-to-end deadline in seconds
    --output, -o    Output file path (default: stdout)
    --format        Output format: json or simple (default: json)
    --verbose, -v   Verbose logging
    --help, -h      Show this help message

Examples:
    photovibe-recs beach.jpg
    photovibe-recs --analysis sunset.json --format simple
    photovibe-recs street.png --gpt -o recs.json
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .catalog import CuratedCatalog
from .config import CURATED_CATALOG_PATH
from .errors import (
    DIFFERENT_INPUT,
    MISCONFIGURED,
    RETRY_LATER,
    RecommendationError,
    UpstreamRateLimited,
)
from .features import ImageAnalysis
from .recommender import RecommendationEngine, RecommendationOutput
from .suggestions import SongSuggester

logger = logging.getLogger(__name__)

EXIT_CODES = {
    RETRY_LATER: 2,
    DIFFERENT_INPUT: 3,
    MISCONFIGURED: 4,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='photovibe-recs',
        description='PhotoVibe Recs - songs that feel like your photo',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s beach.jpg
  %(prog)s --analysis sunset.json --format simple
  %(prog)s street.png --gpt -o recs.json

Environment Variables:
  SPOTIFY_CLIENT_ID      Your Spotify API client ID
  SPOTIFY_CLIENT_SECRET  Your Spotify API client secret
  OPENAI_API_KEY         OpenAI key for image analysis and suggestions
  REDIS_URL              Optional persistent audio-feature cache
        """
    )

    parser.add_argument(
        'image',
        type=str,
        nargs='?',
        help='Image file to analyze'
    )

    parser.add_argument(
        '--analysis',
        type=str,
        default=None,
        help='ImageAnalysis JSON file (skips the vision model)'
    )

    parser.add_argument(
        '--no-curated',
        action='store_true',
        help='Disable the curated catalog source'
    )

    parser.add_argument(
        '--no-search',
        action='store_true',
        help='Disable the Spotify search source'
    )

    parser.add_argument(
        '--gpt',
        action='store_true',
        help='Enable AI song suggestions as a candidate source'
    )

    parser.add_argument(
        '--catalog',
        type=str,
        default=CURATED_CATALOG_PATH,
        help=f'Curated catalog JSON path (default: {CURATED_CATALOG_PATH})'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help='End-to-end deadline in seconds'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        default=None,
        help='Output file path (default: print to stdout)'
    )

    parser.add_argument(
        '--format',
        type=str,
        choices=['json', 'simple'],
        default='json',
        help='Output format (default: json)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s | %(levelname)-5s | %(name)s | %(message)s',
    )


def format_output(result: RecommendationOutput, fmt: str) -> str:
    """Format recommendation output based on requested format."""
    if fmt == 'simple':
        analysis = result.analysis
        lines = [
            f"Mood: {analysis.mood}",
            f"   Energy: {analysis.target_energy:.2f}  Valence: {analysis.target_valence:.2f}",
            f"   Era: {analysis.era_preference}  Languages: {', '.join(analysis.language_bias) or 'any'}",
            "",
            "Top {0} Recommendations:".format(len(result.recommendations)),
            "-" * 50,
        ]
        for i, rec in enumerate(result.recommendations, 1):
            lines.append(f"{i:2}. {rec.title}")
            lines.append(f"    Artist: {rec.artist}")
            lines.append(f"    Score: {rec.score:.4f} ({rec.confidence})")
            lines.append(f"    Why: {rec.explanation}")
            lines.append(f"    Listen: {rec.spotify_url}")
            lines.append("")
        return '\n'.join(lines)

    return result.to_json(indent=2)


def describe_error(error: RecommendationError) -> str:
    """User-facing message for a pipeline error, by remediation kind."""
    if isinstance(error, UpstreamRateLimited):
        return f"Service is busy. Try again in {error.retry_after} seconds."
    if error.remediation == RETRY_LATER:
        return f"A service is unavailable right now, try again shortly ({error.message})."
    if error.remediation == DIFFERENT_INPUT:
        return f"Could not find songs for this input, try a different image ({error.message})."
    if error.remediation == MISCONFIGURED:
        return f"Service misconfigured: {error.message}"
    return f"Error: {error.message}"


def load_analysis(path: str) -> ImageAnalysis:
    with open(path, 'r', encoding='utf-8') as f:
        return ImageAnalysis.from_dict(json.load(f))


async def run(args: argparse.Namespace, engine: Optional[RecommendationEngine] = None) -> RecommendationOutput:
    """Build the engine from arguments and run one recommendation."""
    if engine is None:
        engine = RecommendationEngine(
            catalog=CuratedCatalog(args.catalog),
            suggester=SongSuggester() if args.gpt else None,
        )

    options = {
        'use_curated': not args.no_curated,
        'use_spotify_search': not args.no_search,
        'use_gpt': args.gpt,
    }

    if args.analysis:
        analysis = load_analysis(args.analysis)
        return await engine.recommend_for_analysis(analysis, timeout=args.timeout, **options)

    with open(args.image, 'rb') as f:
        image = f.read()
    mime_type = mimetypes.guess_type(args.image)[0] or 'image/jpeg'
    return await engine.recommend_for_image(image, mime_type=mime_type, timeout=args.timeout, **options)


def main(argv: Optional[List[str]] = None, engine: Optional[RecommendationEngine] = None) -> int:
    """Main entry point for CLI."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.image and not args.analysis:
        parser.error('an image path or --analysis is required')

    configure_logging(args.verbose)

    try:
        result = asyncio.run(run(args, engine))
    except RecommendationError as e:
        logger.debug("Recommendation failed", exc_info=True)
        print(describe_error(e), file=sys.stderr)
        return EXIT_CODES.get(e.remediation, 1)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: could not read input: {e}", file=sys.stderr)
        return EXIT_CODES[DIFFERENT_INPUT]

    output = format_output(result, args.format)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(output)
        print(f"Recommendations saved to: {args.output}")
    else:
        print(output)

    return 0


if __name__ == '__main__':
    sys.exit(main())
