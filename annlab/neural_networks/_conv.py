"""
Convolutional layers operating on flattened image batches.

Inputs arrive as (batch_size, channels * height * width) in C order and are
reshaped to (batch_size, channels, height, width) internally, so these
layers stack with Linear and the activation layers in one pipeline.
"""
from collections import OrderedDict

import numpy as np

from ..base import Layer, register_layer
from ..common.utils import check_input
from ..exceptions import InvalidConfiguration


# Helper Functions
def get_patches(arr, patch_shape, strides=(1, 1), dilation=(1, 1)):
    """
    Extract sliding window patches from a 4D array for convolution.

    Args:
        arr: Input array of shape (batch_size, channels, height, width)
        patch_shape: Tuple (patch_h, patch_w)
        strides: Tuple (stride_h, stride_w)
        dilation: Tuple (dilation_h, dilation_w), spacing between kernel taps

    Returns:
        Patches array of shape (batch_size, out_h, out_w, channels, patch_h, patch_w)
    """
    if arr.ndim != 4:
        raise ValueError(f"Unsupported array dimension: {arr.ndim}")

    patch_h, patch_w = patch_shape
    stride_h, stride_w = strides
    dilation_h, dilation_w = dilation
    span_h = dilation_h * (patch_h - 1) + 1
    span_w = dilation_w * (patch_w - 1) + 1

    # Use sliding_window_view for the spatial dimensions
    windows = np.lib.stride_tricks.sliding_window_view(arr, (span_h, span_w),
                                                       axis=(2, 3))
    # Apply stride and dilation by slicing
    windows = windows[:, :, ::stride_h, ::stride_w, ::dilation_h, ::dilation_w]
    # Rearrange dimensions: (N, out_h, out_w, C, patch_h, patch_w)
    return windows.transpose(0, 2, 3, 1, 4, 5)


def pad_images(input_data, pad_h, pad_w):
    """
    Pad images with zeros on all sides.

    Args:
        input_data: Input images of shape (batch_size, channels, height, width)
        pad_h: Number of rows to pad on top and bottom
        pad_w: Number of columns to pad on left and right

    Returns:
        Padded images
    """
    if input_data.ndim != 4:
        raise ValueError(f"Unsupported input shape: {input_data.shape}")
    if pad_h == 0 and pad_w == 0:
        return input_data
    return np.pad(input_data, ((0, 0), (0, 0), (pad_h, pad_h), (pad_w, pad_w)),
                  mode='constant')


def _positive(**values):
    for name, value in values.items():
        if int(value) <= 0:
            raise InvalidConfiguration(f"{name} must be positive, got {value}")


@register_layer
class Convolution(Layer):
    """
    2D cross-correlation with zero padding, stride and dilation.

    The kernel is stored as (out_channels, in_channels, kernel_h, kernel_w)
    followed by one bias per output channel. The kernel is not flipped.
    """
    _config_keys = ("in_channels", "out_channels", "kernel_h", "kernel_w",
                    "input_height", "input_width", "stride_h", "stride_w",
                    "pad_h", "pad_w", "dilation_h", "dilation_w")

    def __init__(self, in_channels, out_channels, kernel_h, kernel_w,
                 input_height, input_width, stride_h=1, stride_w=1,
                 pad_h=0, pad_w=0, dilation_h=1, dilation_w=1):
        """
        Initialize the convolution layer.

        Args:
            in_channels (int): Number of input maps
            out_channels (int): Number of output maps
            kernel_h (int): Kernel height
            kernel_w (int): Kernel width
            input_height (int): Height of each input map
            input_width (int): Width of each input map
            stride_h (int): Vertical stride
            stride_w (int): Horizontal stride
            pad_h (int): Zero rows added above and below
            pad_w (int): Zero columns added left and right
            dilation_h (int): Vertical spacing between kernel taps
            dilation_w (int): Horizontal spacing between kernel taps
        """
        super().__init__()
        _positive(in_channels=in_channels, out_channels=out_channels,
                  kernel_h=kernel_h, kernel_w=kernel_w,
                  input_height=input_height, input_width=input_width,
                  stride_h=stride_h, stride_w=stride_w,
                  dilation_h=dilation_h, dilation_w=dilation_w)
        if pad_h < 0 or pad_w < 0:
            raise InvalidConfiguration("Padding must be non-negative.")

        self.in_channels = int(in_channels)
        self.out_channels = int(out_channels)
        self.kernel_h = int(kernel_h)
        self.kernel_w = int(kernel_w)
        self.input_height = int(input_height)
        self.input_width = int(input_width)
        self.stride_h = int(stride_h)
        self.stride_w = int(stride_w)
        self.pad_h = int(pad_h)
        self.pad_w = int(pad_w)
        self.dilation_h = int(dilation_h)
        self.dilation_w = int(dilation_w)

        span_h = self.dilation_h * (self.kernel_h - 1) + 1
        span_w = self.dilation_w * (self.kernel_w - 1) + 1
        self.output_height = (self.input_height + 2 * self.pad_h - span_h) // self.stride_h + 1
        self.output_width = (self.input_width + 2 * self.pad_w - span_w) // self.stride_w + 1
        if self.output_height <= 0 or self.output_width <= 0:
            raise InvalidConfiguration(
                f"Kernel ({self.kernel_h}x{self.kernel_w}, dilation "
                f"{self.dilation_h}x{self.dilation_w}) does not fit a padded "
                f"{self.input_height}x{self.input_width} input")

    @property
    def in_features(self):
        return self.in_channels * self.input_height * self.input_width

    @property
    def out_features(self):
        return self.out_channels * self.output_height * self.output_width

    def param_shapes(self):
        return OrderedDict(
            weight=(self.out_channels, self.in_channels, self.kernel_h, self.kernel_w),
            bias=(self.out_channels,))

    def _patches(self, x):
        images = x.reshape(-1, self.in_channels, self.input_height, self.input_width)
        padded = pad_images(images, self.pad_h, self.pad_w)
        return get_patches(padded, (self.kernel_h, self.kernel_w),
                           (self.stride_h, self.stride_w),
                           (self.dilation_h, self.dilation_w))

    def _upstream(self, upstream_grad):
        upstream_grad = check_input(upstream_grad, self.out_features, type(self).__name__)
        # (N, out_h, out_w, out_channels)
        return upstream_grad.reshape(-1, self.out_channels, self.output_height,
                                     self.output_width).transpose(0, 2, 3, 1)

    def forward(self, x, deterministic=False):
        """
        Forward pass: correlate every output map with the padded input.

        Args:
            x (ndarray): Input of shape (batch_size, in_channels * input_height * input_width)
            deterministic (bool): Unused

        Returns:
            ndarray: Output of shape (batch_size, out_channels * output_height * output_width)
        """
        x = check_input(x, self.in_features, type(self).__name__)
        params = self.named_parameters()
        patches = self._patches(x)
        batch_size = x.shape[0]

        patches_flat = patches.reshape(batch_size * self.output_height * self.output_width, -1)
        weight_flat = params["weight"].reshape(self.out_channels, -1)
        output = patches_flat @ weight_flat.T + params["bias"]
        output = output.reshape(batch_size, self.output_height, self.output_width,
                                self.out_channels).transpose(0, 3, 1, 2)
        self.output = output.reshape(batch_size, -1)
        return self.output

    def backward(self, x, upstream_grad):
        """
        Scatter the output gradient back onto every input pixel it touched.
        """
        grad = self._upstream(upstream_grad)
        batch_size = grad.shape[0]
        weight_flat = self.named_parameters()["weight"].reshape(self.out_channels, -1)
        grad_patches = (grad @ weight_flat).reshape(
            batch_size, self.output_height, self.output_width,
            self.in_channels, self.kernel_h, self.kernel_w)

        padded = np.zeros((batch_size, self.in_channels,
                           self.input_height + 2 * self.pad_h,
                           self.input_width + 2 * self.pad_w))
        rows = self.stride_h * (self.output_height - 1) + 1
        cols = self.stride_w * (self.output_width - 1) + 1
        for a in range(self.kernel_h):
            top = a * self.dilation_h
            for b in range(self.kernel_w):
                left = b * self.dilation_w
                padded[:, :, top:top + rows:self.stride_h, left:left + cols:self.stride_w] += \
                    grad_patches[:, :, :, :, a, b].transpose(0, 3, 1, 2)

        grad_input = padded[:, :, self.pad_h:self.pad_h + self.input_height,
                            self.pad_w:self.pad_w + self.input_width]
        self.delta = grad_input.reshape(batch_size, -1)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        x = check_input(x, self.in_features, type(self).__name__)
        grad = self._upstream(upstream_grad)
        grads = self._gradient_views(gradient)
        patches_flat = self._patches(x).reshape(grad.shape[0] * self.output_height
                                                * self.output_width, -1)
        grad_flat = grad.reshape(-1, self.out_channels)
        grads["weight"] += (grad_flat.T @ patches_flat).reshape(grads["weight"].shape)
        grads["bias"] += np.sum(grad_flat, axis=0)


@register_layer
class AtrousConvolution(Convolution):
    """Dilated convolution; the dilation (atrous rate) must be given explicitly."""

    def __init__(self, in_channels, out_channels, kernel_h, kernel_w,
                 input_height, input_width, dilation_h, dilation_w,
                 stride_h=1, stride_w=1, pad_h=0, pad_w=0):
        super().__init__(in_channels, out_channels, kernel_h, kernel_w,
                         input_height, input_width, stride_h=stride_h,
                         stride_w=stride_w, pad_h=pad_h, pad_w=pad_w,
                         dilation_h=dilation_h, dilation_w=dilation_w)


@register_layer
class TransposedConvolution(Layer):
    """
    Transposed (fractionally strided) convolution.

    Every input pixel spreads its value, weighted by the kernel, over a
    kernel-sized block of the output; blocks of neighbouring pixels are
    ``stride`` apart and the whole result is framed by ``pad`` zero rows and
    columns. The output map is ``stride * (input - 1) + kernel + 2 * pad``
    wide along each axis.
    """
    _config_keys = ("in_channels", "out_channels", "kernel_h", "kernel_w",
                    "input_height", "input_width", "stride_h", "stride_w",
                    "pad_h", "pad_w")

    def __init__(self, in_channels, out_channels, kernel_h, kernel_w,
                 input_height, input_width, stride_h=1, stride_w=1,
                 pad_h=0, pad_w=0):
        super().__init__()
        _positive(in_channels=in_channels, out_channels=out_channels,
                  kernel_h=kernel_h, kernel_w=kernel_w,
                  input_height=input_height, input_width=input_width,
                  stride_h=stride_h, stride_w=stride_w)
        if pad_h < 0 or pad_w < 0:
            raise InvalidConfiguration("Padding must be non-negative.")

        self.in_channels = int(in_channels)
        self.out_channels = int(out_channels)
        self.kernel_h = int(kernel_h)
        self.kernel_w = int(kernel_w)
        self.input_height = int(input_height)
        self.input_width = int(input_width)
        self.stride_h = int(stride_h)
        self.stride_w = int(stride_w)
        self.pad_h = int(pad_h)
        self.pad_w = int(pad_w)
        self.output_height = self.stride_h * (self.input_height - 1) + self.kernel_h + 2 * self.pad_h
        self.output_width = self.stride_w * (self.input_width - 1) + self.kernel_w + 2 * self.pad_w

    @property
    def in_features(self):
        return self.in_channels * self.input_height * self.input_width

    @property
    def out_features(self):
        return self.out_channels * self.output_height * self.output_width

    def param_shapes(self):
        return OrderedDict(
            weight=(self.out_channels, self.in_channels, self.kernel_h, self.kernel_w),
            bias=(self.out_channels,))

    def _images(self, x):
        x = check_input(x, self.in_features, "TransposedConvolution")
        return x.reshape(-1, self.in_channels, self.input_height, self.input_width)

    def _grad_patches(self, upstream_grad):
        upstream_grad = check_input(upstream_grad, self.out_features,
                                    "TransposedConvolution")
        grad = upstream_grad.reshape(-1, self.out_channels, self.output_height,
                                     self.output_width)
        cropped = grad[:, :, self.pad_h:self.output_height - self.pad_h,
                       self.pad_w:self.output_width - self.pad_w]
        # (N, input_height, input_width, out_channels, kernel_h, kernel_w)
        return grad, get_patches(cropped, (self.kernel_h, self.kernel_w),
                                 (self.stride_h, self.stride_w))

    def forward(self, x, deterministic=False):
        images = self._images(x)
        params = self.named_parameters()
        weight = params["weight"]
        batch_size = images.shape[0]

        output = np.zeros((batch_size, self.out_channels,
                           self.output_height, self.output_width))
        rows = self.stride_h * (self.input_height - 1) + 1
        cols = self.stride_w * (self.input_width - 1) + 1
        for a in range(self.kernel_h):
            top = self.pad_h + a
            for b in range(self.kernel_w):
                left = self.pad_w + b
                output[:, :, top:top + rows:self.stride_h, left:left + cols:self.stride_w] += \
                    np.einsum('nchw,oc->nohw', images, weight[:, :, a, b])

        output += params["bias"][None, :, None, None]
        self.output = output.reshape(batch_size, -1)
        return self.output

    def backward(self, x, upstream_grad):
        _, patches = self._grad_patches(upstream_grad)
        batch_size = patches.shape[0]
        weight = self.named_parameters()["weight"]
        # (in_channels, out_channels * kernel_h * kernel_w)
        weight_flat = weight.transpose(1, 0, 2, 3).reshape(self.in_channels, -1)
        grad_input = patches.reshape(batch_size * self.input_height * self.input_width, -1) \
            @ weight_flat.T
        grad_input = grad_input.reshape(batch_size, self.input_height, self.input_width,
                                        self.in_channels).transpose(0, 3, 1, 2)
        self.delta = grad_input.reshape(batch_size, -1)
        return self.delta

    def gradient(self, x, upstream_grad, gradient):
        images = self._images(x)
        grad, patches = self._grad_patches(upstream_grad)
        grads = self._gradient_views(gradient)
        grads["weight"] += np.einsum('nchw,nhwoab->ocab', images, patches)
        grads["bias"] += np.sum(grad, axis=(0, 2, 3))


def _interpolation_matrix(n_in, n_out):
    # Row i blends the two source positions around i * n_in / n_out; the
    # upper neighbour is clamped to the last row or column.
    origin = np.arange(n_out) * (n_in / n_out)
    low = np.floor(origin).astype(int)
    high = np.minimum(low + 1, n_in - 1)
    frac = origin - low
    matrix = np.zeros((n_out, n_in))
    np.add.at(matrix, (np.arange(n_out), low), 1.0 - frac)
    np.add.at(matrix, (np.arange(n_out), high), frac)
    return matrix


@register_layer
class BilinearInterpolation(Layer):
    """
    Resize every channel from (input_height, input_width) to
    (output_height, output_width) by bilinear interpolation.

    The map is linear, ``Y = R_h X R_w^T`` per channel, and ``backward``
    applies its transpose.
    """
    _config_keys = ("input_height", "input_width", "output_height", "output_width",
                    "channels")

    def __init__(self, input_height, input_width, output_height, output_width, channels=1):
        super().__init__()
        _positive(input_height=input_height, input_width=input_width,
                  output_height=output_height, output_width=output_width,
                  channels=channels)
        self.input_height = int(input_height)
        self.input_width = int(input_width)
        self.output_height = int(output_height)
        self.output_width = int(output_width)
        self.channels = int(channels)
        self._rows = _interpolation_matrix(self.input_height, self.output_height)
        self._cols = _interpolation_matrix(self.input_width, self.output_width)

    @property
    def in_features(self):
        return self.channels * self.input_height * self.input_width

    @property
    def out_features(self):
        return self.channels * self.output_height * self.output_width

    def forward(self, x, deterministic=False):
        images = check_input(x, self.in_features, "BilinearInterpolation").reshape(
            -1, self.channels, self.input_height, self.input_width)
        output = np.einsum('ih,nchw,jw->ncij', self._rows, images, self._cols)
        self.output = output.reshape(images.shape[0], -1)
        return self.output

    def backward(self, x, upstream_grad):
        grad = check_input(upstream_grad, self.out_features, "BilinearInterpolation").reshape(
            -1, self.channels, self.output_height, self.output_width)
        delta = np.einsum('ih,ncij,jw->nchw', self._rows, grad, self._cols)
        self.delta = delta.reshape(grad.shape[0], -1)
        return self.delta
