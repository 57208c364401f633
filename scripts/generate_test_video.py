#!/usr/bin/env python3
"""Generate a synthetic variable-aspect-ratio video for VARatio testing.

Produces a 16-second 1920x1080 video:
  0-6s    2.39:1 picture (1920x804) letterboxed in black
  6-10s   full-frame 16:9 picture
  10-16s  2.39:1 picture letterboxed again

Analyzing it should yield three segments: 2.39:1, 1.78:1, 2.39:1.
"""

import subprocess
import sys
from pathlib import Path


def generate_test_video(output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)

    # Textured sources so cropdetect sees real picture content, not flat black
    video_filter = (
        "testsrc2=s=1920x804:d=6:r=24,pad=1920:1080:0:138:black[v0];"
        "testsrc2=s=1920x1080:d=4:r=24[v1];"
        "testsrc2=s=1920x804:d=6:r=24,pad=1920:1080:0:138:black[v2];"
        "[v0][v1][v2]concat=n=3:v=1:a=0[vout]"
    )

    cmd = [
        "ffmpeg", "-y",
        "-filter_complex", video_filter,
        "-map", "[vout]",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        str(output),
    ]
    subprocess.run(cmd, check=True)
    print(f"Generated: {output}")


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/variable_ratio.mp4")
    generate_test_video(out)
