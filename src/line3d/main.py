"""
Command-line interface for the line3d pipeline.
"""

import argparse
import logging
import sys
import traceback

from .config import DEFAULT_CONFIG, load_config, merge_config
from .logging import configure_logger
from .pipeline import Pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='3D line reconstruction from calibrated images'
    )

    # Input options
    parser.add_argument(
        '--images',
        type=str,
        required=True,
        help='Path to directory containing input images'
    )

    # Camera poses
    camera_group = parser.add_mutually_exclusive_group(required=True)
    camera_group.add_argument(
        '--colmap',
        type=str,
        help='Path to COLMAP text model directory (cameras.txt, images.txt, points3D.txt)'
    )
    camera_group.add_argument(
        '--transforms',
        type=str,
        help='Path to transforms.json'
    )

    # Output
    parser.add_argument(
        '--output',
        type=str,
        default='./output',
        help='Output directory for results (default: ./output)'
    )

    # Configuration
    parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration YAML file'
    )

    # Pipeline options
    parser.add_argument(
        '--max-lines',
        type=int,
        help='Maximum number of line segments per image (default: 3000)'
    )

    parser.add_argument(
        '--visibility',
        type=int,
        help='Minimum number of views per 3D line (default: 3)'
    )

    parser.add_argument(
        '--diffusion',
        action='store_true',
        help='Smooth the affinity matrix before clustering'
    )

    parser.add_argument(
        '--optimize',
        action='store_true',
        help='Refine the 3D lines with least squares'
    )

    parser.add_argument(
        '--threads',
        type=int,
        help='Number of worker threads (default: 4)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write the log to this file'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


def config_from_args(args) -> dict:
    """Load the YAML config (if any) and apply the command-line overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = merge_config(DEFAULT_CONFIG, None)

    if args.max_lines is not None:
        config['line_detector']['max_line_segments'] = args.max_lines
    if args.visibility is not None:
        config['reconstruction']['visibility_t'] = args.visibility
    if args.diffusion:
        config['reconstruction']['perform_diffusion'] = True
    if args.optimize:
        config['reconstruction']['use_optimizer'] = True
    if args.threads is not None:
        config['runtime']['num_threads'] = args.threads

    return config


def main(argv=None):
    args = build_parser().parse_args(argv)

    configure_logger(level=logging.DEBUG if args.verbose else logging.INFO,
                     file_path=args.log_file)

    try:
        config = config_from_args(args)
    except (OSError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

    camera_path = args.colmap or args.transforms

    print("=" * 60)
    print("line3d: 3D Line Reconstruction")
    print("=" * 60)
    print(f"\nConfiguration:")
    print(f"  Images: {args.images}")
    print(f"  Cameras: {camera_path}")
    print(f"  Output directory: {args.output}")
    print(f"  Max lines per image: {config['line_detector']['max_line_segments']}")
    print(f"  Visibility threshold: {config['reconstruction']['visibility_t']}")
    print(f"  Diffusion: {config['reconstruction']['perform_diffusion']}")
    print(f"  Optimizer: {config['reconstruction']['use_optimizer']}")
    print()

    pipeline = Pipeline(config)

    # Run pipeline
    try:
        results = pipeline.run_full_pipeline(
            image_dir=args.images,
            camera_path=camera_path,
            output_dir=args.output
        )

        num_segments = sum(len(line.collinear_segments) for line in results['lines3d'])

        print("\n" + "=" * 60)
        print("Pipeline Results:")
        print("=" * 60)
        print(f"  Views: {len(results['views'])}")
        print(f"  2D segments: {sum(view.num_lines for view in results['views'].values())}")
        print(f"  Clusters: {len(results['clusters3d'])}")
        print(f"  3D lines reconstructed: {len(results['lines3d'])} ({num_segments} segments)")
        print(f"\nResults saved to: {args.output}")
        print("=" * 60)

    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
