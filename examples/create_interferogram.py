import argparse

from pyifg import tools
from pyifg.insar import parameters, interferogram, coherence_op
from pyifg.sar import product


def parse_args():
    p = argparse.ArgumentParser(description="Interferograms and coherence of a co-registered stack")
    p.add_argument("stack", help="pyifg xml of the co-registered stack")
    p.add_argument("output", help="Output directory")
    p.add_argument("--coherence-only", action="store_true", help="Write coherence bands only")
    p.add_argument("--coh-win-az", dest="coh_win_az", type=int, help="Coherence window in azimuth (default 10)")
    p.add_argument("--coh-win-rg", dest="coh_win_rg", type=int, help="Coherence window in range (default 10)")
    p.add_argument("--subtract-flat-earth-phase", dest="subtract_flat_earth_phase",
                   action=argparse.BooleanOptionalAction,
                   help="Remove the flat earth phase (default on, off with --coherence-only)")
    p.add_argument("--srp-polynomial-degree", dest="srp_polynomial_degree", type=int,
                   help="Flat earth polynomial degree 1..8 (default 5)")
    p.add_argument("--srp-number-points", dest="srp_number_points", type=int,
                   help="Flat earth sample points (default 501)")
    p.add_argument("--orbit-degree", dest="orbit_degree", type=int, help="Orbit interpolation degree 1..5 (default 3)")
    p.add_argument("--include-coherence", dest="include_coherence", action=argparse.BooleanOptionalAction,
                   help="Estimate the coherence (default on)")
    p.add_argument("--square-pixel", dest="square_pixel", action=argparse.BooleanOptionalAction,
                   help="Derive the azimuth window for square pixels on ground")
    p.add_argument("--output-flat-earth-phase", dest="output_flat_earth_phase",
                   action=argparse.BooleanOptionalAction, help="Write the flat earth phase bands")
    p.add_argument("--tile-size", type=int, default=interferogram.DEFAULT_TILE_SIZE, help="Tile size in pixels")
    p.add_argument("--threads", type=int, default=None, help="Worker threads (default all cores)")
    return p.parse_args()


if __name__ == "__main__":
    logger = tools.setup_logging()
    args = parse_args()

    stack = product.fromXml(args.stack)
    if args.coherence_only:
        op = coherence_op.CoherenceOp(stack, parameters.fromArgs(args, parameters.CoherenceParameters))
    else:
        op = interferogram.InterferogramOp(stack, parameters.fromArgs(args))

    target = op.initialize()
    logger.info(f"Creating {target.name} with bands {', '.join(target.band_names())}")
    if op.compute(args.tile_size, args.threads, output=tools.output_console):
        target.save(args.output, overwrite=True)
