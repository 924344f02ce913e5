class CancellationToken:
    """Advisory stop flag for one generation.

    Cancelling never aborts the network call; the holder of the stream checks
    the flag at each frame and stops applying what arrives.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
