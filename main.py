#!/usr/bin/env python3
"""Image Alignment - Entry Point.

Aligns a template image with a target image using forward-additive
Lucas-Kanade and prints the estimated warp parameters.

Usage:
    python main.py template.png target.png --warp euclidean --init 30 30 0
    python main.py target.png target.png --crop 40 40 64 64 --init 40 40
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from imagealign.core.alignment_runner import (
    AlignmentParameters, AlignmentStatus, ImageAligner,
)
from imagealign.core.image_ops import BorderMode, to_intensity, warp_image
from imagealign.core.warp import WarpType, create_warp
from imagealign.io.config_manager import ConfigManager
from imagealign.io.image_loader import ImageLoader
from imagealign.utils.helpers import (
    error_colormap, overlay_heatmap, setup_logger, to_uint8,
)

logger = setup_logger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Forward-additive image alignment")
    parser.add_argument("template", help="template image file")
    parser.add_argument("target", help="target image file")
    parser.add_argument("--warp", choices=[t.value for t in WarpType],
                        help="warp model (default: translation)")
    parser.add_argument("--init", type=float, nargs="+", metavar="P",
                        help="initial warp parameters")
    parser.add_argument("--crop", type=int, nargs=4, metavar=("X", "Y", "W", "H"),
                        help="use this region of the template file as template")
    parser.add_argument("--max-iterations", type=int)
    parser.add_argument("--epsilon", type=float)
    parser.add_argument("--border", choices=[m.value for m in BorderMode])
    parser.add_argument("--config", help="JSON file with alignment parameters")
    parser.add_argument("--output", help="write the result as JSON")
    parser.add_argument("--error-map",
                        help="write the final error image over the template")
    parser.add_argument("--verbose", action="store_true")
    return parser


def resolve_parameters(args) -> AlignmentParameters:
    """Parameters from --config, overridden by explicit flags."""
    if args.config:
        params = ConfigManager.load_parameters(args.config)
    else:
        params = AlignmentParameters()
    if args.warp:
        params.warp_type = WarpType(args.warp)
    if args.max_iterations is not None:
        params.max_iterations = args.max_iterations
    if args.epsilon is not None:
        params.epsilon = args.epsilon
    if args.border:
        params.border_mode = BorderMode(args.border)
    # Re-run dataclass validation after overrides
    return AlignmentParameters.from_dict(params.to_dict())


def write_error_map(filepath, template, result, target, params):
    tmpl = to_intensity(template, "template")
    warped = warp_image(to_intensity(target, "target"), result.to_warp(),
                        tmpl.shape, params.border_mode)
    error = tmpl - warped
    vis = overlay_heatmap(to_uint8(template), error_colormap(error), alpha=0.6)
    # overlay is RGB, OpenCV writes BGR
    ImageLoader.save(filepath, vis[:, :, ::-1].copy())
    logger.info(f"Error map saved to: {filepath}")


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        for name in (__name__, "imagealign.core.forward_additive",
                     "imagealign.core.alignment_runner"):
            logging.getLogger(name).setLevel(logging.DEBUG)

    try:
        params = resolve_parameters(args)
        tmpl_data = ImageLoader.load(args.template)
        target_data = ImageLoader.load(args.target)
        template = tmpl_data.image_gray
        if args.crop:
            template = tmpl_data.crop(*args.crop)

        warp = create_warp(params.warp_type)
        if args.init:
            warp.set_parameters(args.init)
    except (OSError, ValueError) as e:
        logger.error(str(e))
        return 2

    aligner = ImageAligner(params)
    result = aligner.run(template, target_data.image_gray, warp=warp)

    params_str = " ".join(f"{v:.6f}" for v in result.parameters)
    print(f"status: {result.status.value}")
    print(f"iterations: {result.n_iterations}")
    print(f"parameters: {params_str}")
    print(f"mean error: {result.final_error:.6f}")

    if args.output:
        ConfigManager.save_result(result, args.output, params)
    if args.error_map and result.status != AlignmentStatus.DEGENERATE:
        write_error_map(args.error_map, template, result,
                        target_data.image_gray, params)

    return 0 if result.converged else 1


if __name__ == "__main__":
    sys.exit(main())
