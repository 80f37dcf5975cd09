"""Camera capture: probing, supervision, MJPEG demultiplexing, frame cache.

Import from the submodules. This package init stays empty so the simulated
camera child process can read ``camled.camera.defaults`` without loading
the demuxer, aiofiles or Pillow.
"""
