"""Frame-scoped liveness errors.

None of these end a session. They are reported as the current
instruction text and re-evaluated on the next frame.
"""

from enum import Enum


class LivenessError(str, Enum):
    NO_FACE = "NO_FACE"
    OUT_OF_GUIDE = "OUT_OF_GUIDE"
    TOO_FAR = "TOO_FAR"
    TOO_CLOSE = "TOO_CLOSE"
    EXCESSIVE_ROLL = "EXCESSIVE_ROLL"
    SPOOF_SUSPECTED = "SPOOF_SUSPECTED"

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES = {
    LivenessError.NO_FACE: "No face detected. Move into the frame.",
    LivenessError.OUT_OF_GUIDE: "Move your face inside the box",
    LivenessError.TOO_FAR: "Move closer to the camera",
    LivenessError.TOO_CLOSE: "Move further from the camera",
    LivenessError.EXCESSIVE_ROLL: "Keep your head straight (not tilted)",
    LivenessError.SPOOF_SUSPECTED: "Photo or screen detected. Use a real face.",
}
