"""Main entry point for the Sentinel acoustic anomaly detector."""

import argparse
import logging
import sys
from pathlib import Path

from sentinel.config import EngineConfig, Label
from sentinel.engine import EngineController, SoundDeviceCapture
from sentinel.exceptions import SentinelError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sentinel - learn the normal sound of a machine and flag deviations"
    )
    parser.add_argument("--state-dir", type=str, default=None, help="Directory for persisted model state")
    parser.add_argument("--config", type=str, default=None, help="JSON engine config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="Incrementally train on labeled files")
    train.add_argument("--normal", nargs="*", default=[], help="Files of normal operation")
    train.add_argument("--anomaly", nargs="*", default=[], help="Files with known anomalies (scored only)")

    analyze = sub.add_parser("analyze", help="Analyze one file for anomalies")
    analyze.add_argument("input", type=str, help="Input audio file")

    monitor = sub.add_parser("monitor", help="Monitor a live input device")
    monitor.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds")
    monitor.add_argument("--device", type=int, default=None, help="Input device id")
    monitor.add_argument("--sample-rate", type=int, default=44100)

    export = sub.add_parser("export", help="Export model bundle")
    export.add_argument("output", type=str)

    imp = sub.add_parser("import", help="Import model bundle")
    imp.add_argument("input", type=str)

    sens = sub.add_parser("sensitivity", help="Set detection sensitivity (1-10)")
    sens.add_argument("value", type=float)

    sub.add_parser("reset", help="Forget all learned knowledge")
    sub.add_parser("status", help="Show engine status")
    return parser


def _print_status(engine: EngineController) -> None:
    status = engine.status()
    print(f"State:        {status.state.value}")
    print(f"Trained files: {status.trained_files}")
    print(f"Threshold:    {status.threshold:.2f}")
    print(f"Sensitivity:  {status.sensitivity:g}")
    print(f"History:      {status.history_size} scores")
    print(f"Device:       {status.device}")


def _run_monitor(engine: EngineController, args) -> None:
    source = SoundDeviceCapture(device=args.device, sample_rate=args.sample_rate, extractor=engine.extractor)
    max_frames = None
    if args.seconds is not None:
        max_frames = max(1, int(args.seconds / source.frame_duration))

    def show(point):
        flag = "!!" if point.smoothed_score > engine.threshold else "  "
        print(f"{flag} t={point.timestamp:7.2f}s score={point.score:7.2f} centroid={point.feature:7.0f} Hz")

    try:
        segments = engine.run_monitoring(source, max_frames=max_frames, on_point=show)
    except KeyboardInterrupt:
        segments = engine.monitor_segments
    print(f"\n{len(segments)} anomalies during monitoring")


def main(argv=None) -> int:
    """Main function to run the detector."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    config = EngineConfig.from_file(args.config) if args.config else EngineConfig()
    if args.state_dir:
        config.state_dir = args.state_dir

    with EngineController(config) as engine:
        engine.load_or_initialize()
        try:
            if args.command == "train":
                engine.add_to_queue(args.normal, Label.NORMAL)
                engine.add_to_queue(args.anomaly, Label.ANOMALY)
                report = engine.run_training()
                for name, result in report.results:
                    print(f"  {name}: E={result.error:.2f} ({result.label.value})")
                for name in report.failed:
                    print(f"  Error processing {name}")
                _print_status(engine)

            elif args.command == "analyze":
                result = engine.analyze_file(Path(args.input))
                print(f"Threshold: {result.threshold:.2f} (local {result.local_threshold:.2f})")
                for i, seg in enumerate(result.segments):
                    print(
                        f"  {i+1}. {seg.offset_seconds:.2f}s +{seg.duration_seconds:.2f}s "
                        f"intensity={seg.intensity:.2f} severity={seg.severity.value}"
                    )
                print(f"\n{len(result.segments)} anomalies in {result.duration:.1f}s of audio")

            elif args.command == "monitor":
                _run_monitor(engine, args)

            elif args.command == "export":
                engine.export_model(args.output)

            elif args.command == "import":
                engine.import_model(args.input)

            elif args.command == "sensitivity":
                threshold = engine.set_sensitivity(args.value)
                print(f"Threshold: {threshold:.2f}")

            elif args.command == "reset":
                engine.reset()

            elif args.command == "status":
                _print_status(engine)
        except (SentinelError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
