"""Tests for the immutable encode command builder."""

from pathlib import Path

from hevc_queue.services.command_builder import EncodeCommand
from hevc_queue.services.process_controller import OutputTarget


class TestEncodeCommand:
    """Tests for EncodeCommand."""

    def test_default_codecs(self):
        command = EncodeCommand.for_source(Path("in.mkv"))
        assert command.output_args() == ["-c:v", "libx265", "-c:a", "copy", "-c:s", "copy", "-c:d", "copy"]

    def test_builder_returns_new_values(self):
        original = EncodeCommand.for_source(Path("in.mkv"))
        updated = original.with_option("-crf", "19").with_video_filter("yadif")
        assert original.options == ()
        assert original.video_filters == ()
        assert updated.option("-crf") == "19"

    def test_setting_an_option_again_replaces_it(self):
        command = EncodeCommand.for_source(Path("in.mkv")).with_option("-crf", "19").with_option("-crf", "22")
        args = command.output_args()
        assert args.count("-crf") == 1
        assert args[args.index("-crf") + 1] == "22"

    def test_per_stream_codec_follows_defaults(self):
        command = EncodeCommand.for_source(Path("in.mkv")).with_option("-c:a:0", "aac")
        args = command.output_args()
        assert args.index("-c:a:0") > args.index("-c:a")
        assert command.option("-c:a:0") == "aac"

    def test_filters(self):
        command = (
            EncodeCommand.for_source(Path("in.mkv"))
            .with_video_filter("crop=1920:800:0:140")
            .with_video_filter("yadif")
            .with_stream_filter("a:0", "aresample=matrix_encoding=dplii")
            .with_stream_filter("a:0", "aformat=channel_layouts=7.1|5.1|stereo")
            .with_stream_filter("a:1", "volume=4.0dB")
        )
        args = command.output_args()
        assert args[args.index("-vf") + 1] == "crop=1920:800:0:140,yadif"
        assert args[args.index("-filter:a:0") + 1] == (
            "aresample=matrix_encoding=dplii,aformat=channel_layouts=7.1|5.1|stereo"
        )
        assert args[args.index("-filter:a:1") + 1] == "volume=4.0dB"

    def test_x265_params_and_pass(self):
        command = (
            EncodeCommand.for_source(Path("in.mkv"))
            .with_x265_param("aq-mode=3:psy-rd=1")
            .with_x265_param("keyint=24")
            .with_pass_param("pass=2:stats=/tmp/x265stats.log")
        )
        assert command.x265_param_string() == "aq-mode=3:psy-rd=1:keyint=24:pass=2:stats=/tmp/x265stats.log"
        args = command.output_args()
        assert args[-2:] == ["-x265-params", command.x265_param_string()]

    def test_maps_come_first(self):
        command = EncodeCommand.for_source(Path("in.mkv")).with_map("0:0").with_map("0:1")
        assert command.output_args()[:4] == ["-map", "0:0", "-map", "0:1"]

    def test_with_input_returns_index(self):
        command, index = EncodeCommand.for_source(Path("in.mkv")).with_input(Path("subs.srt"))
        assert index == 1
        assert command.inputs == (Path("in.mkv"), Path("subs.srt"))

    def test_pixel_format(self):
        command = EncodeCommand.for_source(Path("in.mkv")).with_pixel_format("yuv420p10le")
        args = command.output_args()
        assert args[args.index("-pix_fmt") + 1] == "yuv420p10le"

    def test_to_spec(self):
        command = EncodeCommand.for_source(Path("in.mkv")).with_input_window(50.0, 30.0)
        spec = command.to_spec(Path("out.mkv"))
        argv = spec.argv()
        assert spec.output is OutputTarget.FILE
        assert argv[-1] == "out.mkv"
        assert argv[argv.index("-ss") + 1] == "50.000"
        assert argv[argv.index("-t") + 1] == "30.000"

    def test_remux(self):
        command = EncodeCommand.remux(Path("out.mkv-pass1"), ("aq-mode=3",))
        assert command.output_args() == [
            "-map", "0", "-c", "copy", "-c:v", "libx265", "-x265-params", "aq-mode=3",
        ]
