"""Tests for restricted install locations."""

import pytest

from comfy_desktop.context import AppPaths
from comfy_desktop.environment.restrictions import (
    RestrictedPathType,
    build_restricted_paths,
    evaluate_path_restrictions,
    is_path_inside,
    normalize_mount_point,
    normalize_path_for_comparison,
)

pytestmark = pytest.mark.unit


class TestNormalize:
    def test_blank_is_none(self):
        assert normalize_path_for_comparison(None) is None
        assert normalize_path_for_comparison("") is None
        assert normalize_path_for_comparison("   ", "linux") is None

    def test_windows_case_and_separators(self, win_paths):
        a = normalize_path_for_comparison("  C:/Users/Test/ComfyUI  ", "win32", win_paths.environ)
        b = normalize_path_for_comparison(r"c:\USERS\test\comfyui\.", "win32", win_paths.environ)
        assert a == b == r"c:\users\test\comfyui"

    def test_windows_rooted_path_uses_system_drive(self):
        result = normalize_path_for_comparison("/ComfyUI", "win32", {"SystemDrive": "D:"})
        assert result == r"d:\comfyui"

    def test_malformed_system_drive_falls_back_to_c(self):
        result = normalize_path_for_comparison("/ComfyUI", "win32", {"SystemDrive": "bogus"})
        assert result == r"c:\comfyui"

    def test_linux_keeps_case(self):
        assert normalize_path_for_comparison("/Home/User/../Data", "linux") == "/Home/Data"

    def test_macos_is_case_insensitive(self):
        assert normalize_path_for_comparison("/Applications/ComfyUI.app", "darwin") == "/applications/comfyui.app"

    def test_mount_point_drive_letter(self):
        assert normalize_mount_point("D:", "win32", {}) == "d:\\"
        assert normalize_mount_point("\\", "win32", {"SystemDrive": "E:"}) == "e:\\"
        assert normalize_mount_point("  ", "linux") is None
        assert normalize_mount_point("/mnt/data/", "linux") == "/mnt/data"


class TestIsPathInside:
    def test_equal_and_nested(self):
        assert is_path_inside("/a/b", "/a/b", "linux")
        assert is_path_inside("/a/b/c/d", "/a/b", "linux")

    def test_sibling_with_shared_prefix(self):
        assert not is_path_inside("/a/bc", "/a/b", "linux")
        assert not is_path_inside("/a", "/a/b", "linux")

    def test_different_windows_drives(self):
        assert not is_path_inside(r"d:\comfyui", r"c:\comfyui", "win32")

    def test_windows_nested(self):
        assert is_path_inside(r"c:\users\test\onedrive\comfyui", r"c:\users\test\onedrive", "win32")


class TestBuildRestrictedPaths:
    def test_windows_zones(self, win_paths):
        entries = build_restricted_paths(win_paths)
        by_type = {}
        for entry in entries:
            by_type.setdefault(entry.type, []).append(entry.path)

        assert r"c:\users\test\appdata\local\programs\comfyui" in by_type[RestrictedPathType.APP_INSTALL_DIR]
        assert (
            r"c:\users\test\appdata\local\programs\comfyui-electron"
            in by_type[RestrictedPathType.APP_INSTALL_DIR]
        )
        assert by_type[RestrictedPathType.UPDATER_CACHE] == [
            r"c:\users\test\appdata\local\comfyui-electron-updater",
            r"c:\users\test\appdata\local\@comfyorgcomfyui-electron-updater",
        ]
        assert by_type[RestrictedPathType.ONE_DRIVE] == [r"c:\users\test\onedrive"]

    def test_duplicates_are_dropped(self):
        paths = AppPaths(
            exe_path="/opt/comfy/comfyui",
            resources_path="/opt/comfy/",
            user_data_dir="/home/u/.config/ComfyUI",
            platform="linux",
            environ={},
        )
        entries = build_restricted_paths(paths)
        assert [e.path for e in entries] == ["/opt/comfy"]

    def test_windows_without_local_app_data(self, win_paths):
        win_paths.environ = {"SystemDrive": "C:"}
        types = {e.type for e in build_restricted_paths(win_paths)}
        assert types == {RestrictedPathType.APP_INSTALL_DIR}


class TestEvaluatePathRestrictions:
    def test_updater_cache_any_case(self, win_paths):
        flags = evaluate_path_restrictions(
            r"C:\USERS\Test\AppData\Local\COMFYUI-ELECTRON-UPDATER\pending", win_paths
        )
        assert flags.is_inside_updater_cache
        assert not flags.is_inside_app_install_dir
        assert flags.is_restricted

    def test_one_drive(self, win_paths):
        flags = evaluate_path_restrictions("c:/users/test/onedrive/ComfyUI", win_paths)
        assert flags.is_one_drive
        assert flags.is_restricted

    def test_legacy_install_dir(self, win_paths):
        flags = evaluate_path_restrictions(
            r"C:\Users\Test\AppData\Local\Programs\comfyui-electron\data", win_paths
        )
        assert flags.is_inside_app_install_dir

    def test_unrelated_windows_path(self, win_paths):
        flags = evaluate_path_restrictions(r"C:\Users\Test\Documents\ComfyUI", win_paths)
        assert not flags.is_restricted
        assert flags.normalized_path == r"c:\users\test\documents\comfyui"

    def test_one_drive_ignored_off_windows(self, linux_paths, tmp_path):
        linux_paths.environ = {"OneDrive": str(tmp_path / "OneDrive")}
        flags = evaluate_path_restrictions(str(tmp_path / "OneDrive" / "ComfyUI"), linux_paths)
        assert not flags.is_one_drive

    def test_mac_bundle_root(self, mac_paths):
        flags = evaluate_path_restrictions("/Applications/ComfyUI.app/user-data", mac_paths)
        assert flags.is_inside_app_install_dir

    def test_mac_bundle_any_case(self, mac_paths):
        flags = evaluate_path_restrictions("/APPLICATIONS/COMFYUI.APP/user-data", mac_paths)
        assert flags.is_inside_app_install_dir

    def test_nested_bundle_path_with_parent_segments(self):
        bundle = "/Users/me/Library/Application Support/ComfyUI/AppName.app"
        paths = AppPaths(
            exe_path=bundle + "/Contents/MacOS/AppName",
            resources_path=bundle + "/Contents/Resources",
            user_data_dir="/Users/me/Library/Application Support/ComfyUI",
            platform="darwin",
            environ={},
        )
        flags = evaluate_path_restrictions(bundle + "/Contents/Resources/app.asar/../config", paths)
        assert flags.is_inside_app_install_dir

    def test_blank_path_is_unrestricted(self, win_paths):
        flags = evaluate_path_restrictions("  ", win_paths)
        assert flags.normalized_path is None
        assert not flags.is_restricted
