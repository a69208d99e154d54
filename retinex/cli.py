import argparse
import logging
import sys

from retinex.config import MODES, configure_logging, load_config, validate_config
from retinex.errors import RetinexError
from retinex.image_io import read_channels, write_channels
from retinex.pipeline import PhaseTimer, balance_channels, retinex_channels

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="retinex-pde",
        description="PDE implementation of the Land Retinex theory. The input image is "
                    "normalized (norm image), then the Retinex PDE is solved on it and "
                    "normalized again (rtnx image).")
    parser.add_argument("threshold", type=float, help="retinex threshold [0...255]")
    parser.add_argument("input", help="input image")
    parser.add_argument("norm", help="output image, normalized input")
    parser.add_argument("rtnx", help="output image, retinex result")
    parser.add_argument("--mode", choices=MODES, help="normalization of the retinex output")
    parser.add_argument("--saturation", type=float,
                        help="fraction of pixels saturated on each side (default 0.015)")
    parser.add_argument("--workers", type=int, help="channels processed in parallel")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="log phase timings")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run(args):
    config = load_config(args.config)
    config["threshold"] = args.threshold
    for key in ("mode", "saturation", "workers"):
        value = getattr(args, key)
        if value is not None:
            config[key] = value
    validate_config(config)

    channels, _, _ = read_channels(args.input)

    norm = balance_channels(channels, saturation=config["saturation"],
                            target_min=config["target_min"], target_max=config["target_max"])
    write_channels(args.norm, norm)

    timer = PhaseTimer()
    rtnx = retinex_channels(channels, config["threshold"], mode=config["mode"],
                            saturation=config["saturation"],
                            target_min=config["target_min"], target_max=config["target_max"],
                            workers=int(config["workers"]), observer=timer)
    write_channels(args.rtnx, rtnx)

    for name, seconds in timer.totals().items():
        logger.debug(f"{name}: {seconds * 1000:.2f} ms")


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")
    try:
        run(args)
    except RetinexError as e:
        print(f"retinex-pde: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
